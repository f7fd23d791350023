from datetime import timedelta

# All amounts are integers in the smallest currency unit (JPY has no subunit).
HOLD_PERIOD_DAYS = 14
HOLD_PERIOD = timedelta(days=HOLD_PERIOD_DAYS)

MINIMUM_WITHDRAWAL_AMOUNT = 1000
MINIMUM_TIP_AMOUNT = 100
PLATFORM_FEE_PERCENT = 30

BANK_TRANSFER_FEE = 250
PAYPAL_FEE = 0

WITHDRAWAL_ESTIMATED_DAYS = 3

EARNING_ID_PREFIX = "ern_"
WITHDRAWAL_ID_PREFIX = "wd_"
WITHDRAWAL_METHOD_ID_PREFIX = "wm_"
