from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    Time,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from ..constants import (
    BookingStatus,
    ConsultationPaymentStatus,
    ConsultationStatus,
    GatewayStatus,
    LocationType,
    ModifierType,
    PaymentStatus,
    PaymentType,
    ServiceStatus,
    WindowPattern,
    WindowType,
)

Base = declarative_base()
metadata = Base.metadata


class Users(Base):
    __tablename__ = 'users'

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    email = Column(Text, nullable=False)
    phone = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

    bookings = relationship('Bookings', back_populates='user')
    consultations = relationship('ConsultationBookings', back_populates='user')


class Services(Base):
    __tablename__ = 'services'

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    base_price = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    buffer_minutes = Column(Integer, nullable=False, default=0, server_default=text('0'))
    requires_deposit = Column(Boolean, nullable=False, default=False, server_default=text('0'))
    deposit_percentage = Column(Float)
    deposit_amount = Column(Integer)
    min_advance_booking_hours = Column(Integer)
    max_advance_booking_days = Column(Integer)
    status = Column(Enum(*ServiceStatus.ALL, name='service_status'), nullable=False, server_default=ServiceStatus.DRAFT)
    auto_confirm_bookings = Column(Boolean, nullable=False, default=False, server_default=text('0'))
    requires_consultation = Column(Boolean, nullable=False, default=False, server_default=text('0'))
    consultation_duration_minutes = Column(Integer, nullable=False, default=30, server_default=text('30'))
    consultation_lead_days = Column(Integer, nullable=False, default=5, server_default=text('5'))
    capacity_version = Column(Integer, nullable=False, default=0, server_default=text('0'))
    created_at = Column(DateTime, server_default=func.now())
    deleted_at = Column(DateTime)

    locations = relationship('ServiceLocations', back_populates='service')
    availability_windows = relationship('ServiceAvailabilityWindows', back_populates='service')
    add_ons = relationship('ServiceAddOns', back_populates='service')
    bookings = relationship('Bookings', back_populates='service')


class ServiceLocations(Base):
    __tablename__ = 'service_locations'

    id = Column(Integer, primary_key=True)
    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    type = Column(Enum(*LocationType.ALL, name='location_type'), nullable=False)
    address = Column(Text)
    additional_charge = Column(Integer, nullable=False, default=0, server_default=text('0'))
    max_capacity = Column(Integer)
    capacity_version = Column(Integer, nullable=False, default=0, server_default=text('0'))
    is_active = Column(Boolean, nullable=False, default=True, server_default=text('1'))
    deleted_at = Column(DateTime)

    service = relationship('Services', back_populates='locations')
    availability_windows = relationship('ServiceAvailabilityWindows', back_populates='location')


class ServiceAvailabilityWindows(Base):
    __tablename__ = 'service_availability_windows'

    id = Column(Integer, primary_key=True)
    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    service_location_id = Column(ForeignKey('service_locations.id', ondelete='CASCADE'))
    title = Column(Text)
    type = Column(Enum(*WindowType.ALL, name='window_type'), nullable=False, server_default=WindowType.REGULAR)
    pattern = Column(Enum(*WindowPattern.ALL, name='window_pattern'), nullable=False)
    day_of_week = Column(Integer)  # 0 = Monday, 6 = Sunday
    start_date = Column(Date)
    end_date = Column(Date)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer)
    break_duration_minutes = Column(Integer, nullable=False, default=0, server_default=text('0'))
    max_bookings = Column(Integer)
    min_advance_booking_hours = Column(Integer)
    max_advance_booking_days = Column(Integer)
    price_modifier = Column(Integer)
    price_modifier_type = Column(Enum(*ModifierType.ALL, name='price_modifier_type'))
    is_bookable = Column(Boolean, nullable=False, default=True, server_default=text('1'))
    is_active = Column(Boolean, nullable=False, default=True, server_default=text('1'))

    service = relationship('Services', back_populates='availability_windows')
    location = relationship('ServiceLocations', back_populates='availability_windows')

    __table_args__ = (
        Index('ix_windows_service_active', 'service_id', 'is_active'),
    )


class ServiceAddOns(Base):
    __tablename__ = 'service_add_ons'

    id = Column(Integer, primary_key=True)
    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    price = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=0, server_default=text('0'))
    max_quantity = Column(Integer, nullable=False, default=1, server_default=text('1'))
    is_required = Column(Boolean, nullable=False, default=False, server_default=text('0'))
    is_active = Column(Boolean, nullable=False, default=True, server_default=text('1'))

    service = relationship('Services', back_populates='add_ons')


class ServicePackages(Base):
    __tablename__ = 'service_packages'

    id = Column(Integer, primary_key=True)
    name = Column(Text, nullable=False)
    description = Column(Text)
    total_price = Column(Integer, nullable=False)
    individual_price_total = Column(Integer, nullable=False, default=0, server_default=text('0'))
    discount_amount = Column(Integer, nullable=False, default=0, server_default=text('0'))
    discount_percentage = Column(Float)
    total_duration_minutes = Column(Integer, nullable=False, default=0, server_default=text('0'))
    requires_deposit = Column(Boolean, nullable=False, default=False, server_default=text('0'))
    deposit_percentage = Column(Float)
    deposit_amount = Column(Integer)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text('1'))
    deleted_at = Column(DateTime)

    items = relationship(
        'ServicePackageItems',
        back_populates='package',
        order_by='ServicePackageItems.order',
    )


class ServicePackageItems(Base):
    __tablename__ = 'service_package_items'

    id = Column(Integer, primary_key=True)
    service_package_id = Column(ForeignKey('service_packages.id', ondelete='CASCADE'), nullable=False)
    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    quantity = Column(Integer, nullable=False, default=1, server_default=text('1'))
    order = Column(Integer, nullable=False, default=0, server_default=text('0'))
    is_optional = Column(Boolean, nullable=False, default=False, server_default=text('0'))

    package = relationship('ServicePackages', back_populates='items')
    service = relationship('Services')

    __table_args__ = (
        UniqueConstraint('service_package_id', 'service_id', name='unique_package_service'),
    )


class Bookings(Base):
    __tablename__ = 'bookings'

    id = Column(Integer, primary_key=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    service_location_id = Column(ForeignKey('service_locations.id', ondelete='SET NULL'))
    service_package_id = Column(ForeignKey('service_packages.id', ondelete='SET NULL'))
    availability_window_id = Column(ForeignKey('service_availability_windows.id', ondelete='SET NULL'))
    booking_reference = Column(Text, nullable=False, unique=True)

    scheduled_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    base_price = Column(Integer, nullable=False)
    addons_total = Column(Integer, nullable=False, default=0, server_default=text('0'))
    location_surcharge = Column(Integer, nullable=False, default=0, server_default=text('0'))
    window_modifier = Column(Integer, nullable=False, default=0, server_default=text('0'))
    total_amount = Column(Integer, nullable=False)
    deposit_amount = Column(Integer)
    remaining_amount = Column(Integer)

    status = Column(Enum(*BookingStatus.ALL, name='booking_status'), nullable=False, server_default=BookingStatus.PENDING)
    payment_status = Column(Enum(*PaymentStatus.ALL, name='payment_status'), nullable=False, server_default=PaymentStatus.PENDING)

    client_name = Column(Text, nullable=False)
    client_email = Column(Text, nullable=False)
    client_phone = Column(Text)
    notes = Column(Text)
    special_requirements = Column(Text)

    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    actual_duration_minutes = Column(Integer)
    completion_notes = Column(Text)
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(Text)
    refund_percentage = Column(Integer)
    no_show_at = Column(DateTime)
    rescheduled_from_booking_id = Column(ForeignKey('bookings.id', ondelete='SET NULL'))

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    deleted_at = Column(DateTime)

    user = relationship('Users', back_populates='bookings')
    service = relationship('Services', back_populates='bookings')
    location = relationship('ServiceLocations')
    package = relationship('ServicePackages')
    add_ons = relationship('BookingAddOns', back_populates='booking')
    payments = relationship('Payments', back_populates='booking')
    consultations = relationship('ConsultationBookings', back_populates='main_booking')
    status_history = relationship(
        'BookingStatusHistory',
        back_populates='booking',
        order_by='BookingStatusHistory.id',
    )
    rescheduled_from = relationship('Bookings', remote_side=[id])

    __table_args__ = (
        Index('ix_bookings_service_scheduled', 'service_id', 'scheduled_at'),
        Index('ix_bookings_location_scheduled', 'service_location_id', 'scheduled_at'),
        Index('ix_bookings_status_scheduled', 'status', 'scheduled_at'),
    )


class BookingAddOns(Base):
    __tablename__ = 'booking_add_ons'

    id = Column(Integer, primary_key=True)
    booking_id = Column(ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    service_add_on_id = Column(ForeignKey('service_add_ons.id', ondelete='SET NULL'))
    name = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Integer, nullable=False)
    total_price = Column(Integer, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=0, server_default=text('0'))

    booking = relationship('Bookings', back_populates='add_ons')


class BookingStatusHistory(Base):
    __tablename__ = 'booking_status_history'

    id = Column(Integer, primary_key=True)
    booking_id = Column(ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    previous_status = Column(Text)
    new_status = Column(Text, nullable=False)
    reason = Column(Text)
    created_at = Column(DateTime, server_default=func.now())

    booking = relationship('Bookings', back_populates='status_history')


class BookingCapacitySlots(Base):
    __tablename__ = 'booking_capacity_slots'

    id = Column(Integer, primary_key=True)
    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    service_location_id = Column(ForeignKey('service_locations.id', ondelete='CASCADE'))
    slot_datetime = Column(DateTime, nullable=False)
    is_blocked = Column(Boolean, nullable=False, default=False, server_default=text('0'))
    available_slots = Column(Integer)
    reason = Column(Text)


class Payments(Base):
    __tablename__ = 'payments'

    id = Column(Integer, primary_key=True)
    booking_id = Column(ForeignKey('bookings.id', ondelete='CASCADE'), nullable=False)
    payment_type = Column(Enum(*PaymentType.ALL, name='payment_type'), nullable=False)
    amount = Column(Integer, nullable=False)
    status = Column(Enum(*GatewayStatus.ALL, name='gateway_status'), nullable=False)
    gateway = Column(Text, nullable=False)
    transaction_reference = Column(Text, nullable=False, unique=True)
    created_at = Column(DateTime, server_default=func.now())

    booking = relationship('Bookings', back_populates='payments')


class ConsultationBookings(Base):
    __tablename__ = 'consultation_bookings'

    id = Column(Integer, primary_key=True)
    user_id = Column(ForeignKey('users.id', ondelete='CASCADE'), nullable=False)
    service_id = Column(ForeignKey('services.id', ondelete='CASCADE'), nullable=False)
    main_booking_id = Column(ForeignKey('bookings.id', ondelete='SET NULL'))
    consultation_reference = Column(Text, nullable=False, unique=True)

    scheduled_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    status = Column(Enum(*ConsultationStatus.ALL, name='consultation_status'), nullable=False, server_default=ConsultationStatus.SCHEDULED)
    type = Column(Text, nullable=False, server_default=text("'pre_booking'"))
    format = Column(Text, nullable=False, server_default=text("'phone'"))

    client_name = Column(Text, nullable=False)
    client_email = Column(Text, nullable=False)
    client_phone = Column(Text)
    consultation_notes = Column(Text)

    started_at = Column(DateTime)
    completed_at = Column(DateTime)
    completion_notes = Column(Text)
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(Text)

    consultation_fee = Column(Integer, nullable=False, default=0, server_default=text('0'))
    fee_waived_if_booking = Column(Boolean, nullable=False, default=True, server_default=text('1'))
    payment_status = Column(
        Enum(*ConsultationPaymentStatus.ALL, name='consultation_payment_status'),
        nullable=False,
        server_default=ConsultationPaymentStatus.FREE,
    )
    payment_reference = Column(Text)

    created_at = Column(DateTime, server_default=func.now())

    user = relationship('Users', back_populates='consultations')
    service = relationship('Services')
    main_booking = relationship('Bookings', back_populates='consultations')
