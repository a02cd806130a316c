"""
Merchant-text category rules for the Financial Twin categoriser.

CATEGORY_RULES is an ordered list walked linearly: the first matching rule
wins. Lower priority numbers are tried first; rules sharing a priority keep
their declaration order. Do not turn this into a dict.
"""

from ..models import CategoryRule


def _rules(priority, category, keywords, kind="keyword"):
    return [CategoryRule(pattern=kw, category=category, priority=priority, kind=kind) for kw in keywords]


# Known merchants (most specific, highest confidence)
_MERCHANT_RULES = (
    # "UBER EATS" must be tried before "UBER"
    _rules(10, "dining", ["UBER EATS", "DOORDASH", "GRUBHUB"])
    + _rules(11, "subscriptions", [
        "NETFLIX", "SPOTIFY", "HULU", "DISNEY+", "APPLE MUSIC", "AMAZON PRIME",
        "YOUTUBE PREMIUM", "HBO MAX", "PARAMOUNT+", "ADOBE",
    ])
    + _rules(12, "groceries", [
        "WALMART", "TARGET", "COSTCO", "WHOLE FOODS", "TRADER JOE", "KROGER",
        "ALDI", "PUBLIX", "SAFEWAY",
    ])
    + _rules(13, "dining", ["STARBUCKS", "MCDONALD", "CHIPOTLE", "CHICK-FIL-A", "DUNKIN"])
    + _rules(14, "transportation", ["UBER", "LYFT", "SHELL", "CHEVRON", "EXXON"])
    + _rules(14, "transportation", [r"\bBP\b"], kind="regex")
    + _rules(15, "investment", [
        "ROBINHOOD", "FIDELITY", "VANGUARD", "CHARLES SCHWAB", "ETRADE",
        "COINBASE", "WEALTHFRONT", "BETTERMENT",
    ])
    + _rules(16, "rent", ["ZELLE RENT", "VENMO RENT"])
)

# Generic descriptive keywords
_KEYWORD_RULES = (
    _rules(50, "rent", [r"\bRENT\b", r"\bMORTGAGE\b"], kind="regex")
    + _rules(50, "rent", ["REAL ESTATE", "PROPERTY MGMT"])
    + _rules(51, "debt_payment", [
        "STUDENT LOAN", "CREDIT CARD", "LOAN PAYMENT", "LOAN PMT", "CARD PAYMENT",
        "AUTOPAY", "NAVIENT", "SALLIE MAE",
    ])
    + _rules(52, "groceries", ["GROCERY", "GROCERIES", "SUPERMARKET", "MARKET"])
    + _rules(53, "dining", ["RESTAURANT", "COFFEE", "CAFE", "PIZZA", "BURGER", "GRILL", "FAST FOOD"])
    + _rules(54, "utilities", [
        "ELECTRIC", "WATER", "INTERNET", "COMCAST", "VERIZON", "AT&T", "T-MOBILE",
        "UTILITY", "UTILITIES", "PHONE",
    ])
    + _rules(55, "insurance", ["INSURANCE", "GEICO", "STATE FARM", "PROGRESSIVE", "ALLSTATE"])
    + _rules(56, "medical", ["PHARMACY", "CVS", "WALGREENS", "CLINIC", "HOSPITAL", "DENTAL", "MEDICAL"])
    + _rules(57, "transportation", ["PARKING", "TAXI", "TRANSIT", "AIRLINE", "FUEL", "GAS STATION"])
    + _rules(58, "entertainment", ["CINEMA", "MOVIE", "THEATER", "CONCERT", "TICKETMASTER", "GYM", "FITNESS"])
    + _rules(59, "shopping", ["AMAZON", "EBAY", "BEST BUY", "APPLE STORE", "CLOTHING", "DEPARTMENT STORE"])
    + _rules(60, "subscriptions", ["SUBSCRIPTION", "MEMBERSHIP", "STREAMING"])
    + _rules(61, "savings_transfer", ["SAVINGS", "TRANSFER TO SAV"])
    + _rules(62, "investment", ["BROKERAGE", "INVESTMENT"])
    + _rules(62, "investment", [r"\bETF\b"], kind="regex")
    + _rules(63, "income", ["PAYROLL", "DIRECT DEP", "SALARY"])
)

CATEGORY_RULES = sorted(_MERCHANT_RULES + _KEYWORD_RULES, key=lambda rule: rule.priority)


# Upstream classifier hint -> semantic category
HINT_CATEGORY_MAP = {
    # Housing
    "rent": "rent",
    "mortgage": "rent",
    "real estate": "rent",
    "rent_and_utilities_rent": "rent",
    # Food & drink
    "groceries": "groceries",
    "supermarkets and groceries": "groceries",
    "food_and_drink_groceries": "groceries",
    "food and drink": "dining",
    "food_and_drink": "dining",
    "restaurants": "dining",
    "coffee shop": "dining",
    "fast food": "dining",
    # Utilities
    "utilities": "utilities",
    "rent_and_utilities": "utilities",
    "telecommunication services": "utilities",
    "internet": "utilities",
    "phone": "utilities",
    # Insurance / medical
    "insurance": "insurance",
    "healthcare": "medical",
    "medical": "medical",
    "pharmacies": "medical",
    # Entertainment / shopping
    "entertainment": "entertainment",
    "recreation": "entertainment",
    "shops": "shopping",
    "general_merchandise": "shopping",
    "clothing": "shopping",
    "electronics": "shopping",
    "digital purchase": "shopping",
    "subscription": "subscriptions",
    "streaming": "subscriptions",
    # Money movement
    "savings": "savings_transfer",
    "transfer_out_savings": "savings_transfer",
    "investment": "investment",
    "transfer_out_investment_and_retirement_funds": "investment",
    "brokerage": "investment",
    "loan": "debt_payment",
    "loan_payments": "debt_payment",
    "credit card": "debt_payment",
    "loan_payments_credit_card_payment": "debt_payment",
    "student loan": "debt_payment",
    # Transportation
    "transportation": "transportation",
    "travel": "transportation",
    "taxi": "transportation",
    "gas stations": "transportation",
    "parking": "transportation",
    # Income
    "income": "income",
    "income_wages": "income",
    "payroll": "income",
    "interest earned": "income",
}


# Inflow text that is money moving, not income
INCOME_EXCLUSION_KEYWORDS = [
    "REFUND", "REVERSAL", "RETURN", "CHARGEBACK",
    "OWN ACCOUNT", "INTERNAL", "SELF TRANSFER", "FROM SAVINGS", "BETWEEN ACCOUNTS",
]

PAYROLL_KEYWORDS = [
    "PAYROLL", "DIRECT DEP", "DIRECT DEPOSIT", "SALARY", "WAGE", "PAYCHECK",
    "ACH DEPOSIT", "EMPLOYER",
]

OTHER_INCOME_KEYWORDS = [
    "TAX REFUND", "IRS TREAS", "UNEMPLOYMENT", "SOCIAL SECURITY", "PENSION",
    "RETIREMENT", "DIVIDEND", "INTEREST EARNED",
]
