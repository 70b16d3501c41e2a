from . import analytics, apartments, bookings, discounts, maintenance, payments, viewings

routers = [
    bookings.router,
    apartments.router,
    discounts.router,
    payments.router,
    viewings.router,
    maintenance.router,
    analytics.router,
]
