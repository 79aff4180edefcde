"""
Shared vocabulary for listings and bookings.

Values are the strings stored in the database and exchanged over the API.
"""


class ListingCategory:
    MOTORCYCLES = "Motorcycles"
    BIKES = "Bikes"
    BOATS = "Boats"
    CAMPING = "Camping"
    WINTER_SPORTS = "Winter Sports"
    WATER_SPORTS = "Water Sports"
    RVS = "RVs"
    ATVS_UTVS = "ATVs & UTVs"

    ALL = (MOTORCYCLES, BIKES, BOATS, CAMPING, WINTER_SPORTS, WATER_SPORTS, RVS, ATVS_UTVS)


class BookingStatus:
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    ALL = (PENDING, CONFIRMED, ACTIVE, COMPLETED, CANCELLED)
    TERMINAL = (COMPLETED, CANCELLED)


# Forward-only status graph; cancellation is the single side exit
STATUS_TRANSITIONS = {
    BookingStatus.PENDING: (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    BookingStatus.CONFIRMED: (BookingStatus.ACTIVE, BookingStatus.CANCELLED),
    BookingStatus.ACTIVE: (BookingStatus.COMPLETED,),
    BookingStatus.COMPLETED: (),
    BookingStatus.CANCELLED: (),
}

PRICING_TYPES = ('daily', 'hourly')
PROTECTION_TYPES = ('waiver', 'insurance')
PAYMENT_METHODS = ('platform', 'direct')
CONTRACT_PREFERENCES = ('standard', 'custom')
INSPECTION_MODES = ('handover', 'return')
INSPECTION_RESULTS = ('clean', 'damaged')
DEPOSIT_STATUSES = ('released', 'held')
# Security deposit outcome for each inspection result
DEPOSIT_FOR_RESULT = {'clean': 'released', 'damaged': 'held'}
DISPUTE_REASONS = ('damage', 'late_return', 'not_as_described', 'cancellation')
DISPUTE_STATUSES = ('open', 'resolved', 'escalated')
