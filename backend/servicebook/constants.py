# backend/servicebook/constants.py
"""String constants shared by models, schemas and services."""


class ServiceStatus:
    ACTIVE = "active"
    INACTIVE = "inactive"
    DRAFT = "draft"

    ALL = (ACTIVE, INACTIVE, DRAFT)


class LocationType:
    BUSINESS_PREMISES = "business_premises"
    CLIENT_LOCATION = "client_location"
    VIRTUAL = "virtual"
    OUTDOOR = "outdoor"

    ALL = (BUSINESS_PREMISES, CLIENT_LOCATION, VIRTUAL, OUTDOOR)


class WindowType:
    REGULAR = "regular"
    EXCEPTION = "exception"
    SPECIAL_HOURS = "special_hours"
    BLOCKED = "blocked"

    ALL = (REGULAR, EXCEPTION, SPECIAL_HOURS, BLOCKED)


class WindowPattern:
    WEEKLY = "weekly"
    DAILY = "daily"
    DATE_RANGE = "date_range"
    SPECIFIC_DATE = "specific_date"

    ALL = (WEEKLY, DAILY, DATE_RANGE, SPECIFIC_DATE)
    DATE_BASED = (DATE_RANGE, SPECIFIC_DATE)


class ModifierType:
    FIXED = "fixed"
    PERCENTAGE = "percentage"

    ALL = (FIXED, PERCENTAGE)


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"

    ALL = (PENDING, CONFIRMED, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW, RESCHEDULED)
    TERMINAL = (COMPLETED, CANCELLED, NO_SHOW, RESCHEDULED)

    # Statuses that hold capacity in a slot
    OCCUPYING = (PENDING, CONFIRMED, IN_PROGRESS, COMPLETED)


class PaymentStatus:
    PENDING = "pending"
    DEPOSIT_PAID = "deposit_paid"
    FULLY_PAID = "fully_paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"

    ALL = (PENDING, DEPOSIT_PAID, FULLY_PAID, PARTIALLY_REFUNDED, REFUNDED)


class PaymentType:
    DEPOSIT = "deposit"
    FULL = "full"
    FINAL = "final"
    REFUND = "refund"

    ALL = (DEPOSIT, FULL, FINAL, REFUND)


class GatewayStatus:
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    ALL = (PENDING, SUCCEEDED, FAILED)


class ConsultationStatus:
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    ALL = (SCHEDULED, IN_PROGRESS, COMPLETED, CANCELLED, NO_SHOW)
    TERMINAL = (COMPLETED, CANCELLED, NO_SHOW)


class ConsultationType:
    PRE_BOOKING = "pre_booking"
    DESIGN = "design"
    PLANNING = "planning"
    TECHNICAL = "technical"
    FOLLOW_UP = "follow_up"

    ALL = (PRE_BOOKING, DESIGN, PLANNING, TECHNICAL, FOLLOW_UP)


class ConsultationFormat:
    PHONE = "phone"
    VIDEO = "video"
    IN_PERSON = "in_person"
    SITE_VISIT = "site_visit"

    ALL = (PHONE, VIDEO, IN_PERSON, SITE_VISIT)


class ConsultationPaymentStatus:
    FREE = "free"
    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"
    WAIVED = "waived"

    ALL = (FREE, UNPAID, PAID, REFUNDED, WAIVED)


class NotificationType:
    RECEIVED = "received"
    CONFIRMATION = "confirmation"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    PAYMENT_RECEIVED = "payment_received"
