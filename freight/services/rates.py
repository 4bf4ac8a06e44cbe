"""
Rate calculator - pure money arithmetic for loads and driver pay.

All results are Decimals rounded half-up to cents, never truncated.
"""

from decimal import ROUND_HALF_UP, Decimal

from freight.models import Driver

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_decimal(value):
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
    return Decimal(str(value))


def round_money(value):
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def fuel_surcharge(rate_amount, pct):
    """Fuel surcharge as a percentage of the linehaul rate; 0 when pct <= 0."""
    pct = to_decimal(pct)
    if pct <= 0:
        return ZERO
    return round_money(to_decimal(rate_amount) * pct / 100)


def load_total(rate_amount, fuel_surcharge_amount, accessorials_sum):
    return round_money(
        to_decimal(rate_amount)
        + to_decimal(fuel_surcharge_amount)
        + to_decimal(accessorials_sum)
    )


def accessorial_total(quantity, rate):
    return round_money(to_decimal(quantity) * to_decimal(rate))


def driver_pay(load, driver):
    """
    What the driver earns for one load under their pay model.

    CPM pays loaded miles times the rate, PERCENTAGE pays a share of the load
    total (falling back to the linehaul rate), FLAT pays the rate as-is. A
    minimum-per-mile floor, when set, lifts the result to miles times floor.
    """
    if load is None or driver is None:
        return ZERO

    miles = to_decimal(load.loaded_miles or 0)
    pay_rate = to_decimal(driver.pay_rate)

    if driver.pay_model == Driver.PayModel.CPM:
        pay = miles * pay_rate
    elif driver.pay_model == Driver.PayModel.PERCENTAGE:
        basis = to_decimal(load.total_amount or load.rate_amount)
        pay = basis * pay_rate / 100
    elif driver.pay_model == Driver.PayModel.FLAT:
        pay = pay_rate
    else:
        pay = Decimal("0")

    if driver.minimum_per_mile and miles > 0:
        pay = max(pay, miles * to_decimal(driver.minimum_per_mile))

    return round_money(pay)
