"""
Browser URL and selector helpers for the DVSA practical test booking site.
"""

BASE_URL = "https://driver-services.dvsa.gov.uk"

SEARCH_PAGE_TITLE = "Test centre availability - Book tests"


class WebPages:
    """URLs and URL fragments for browser-based automation"""

    TIMEOUT_FRAGMENTS = ("/obs-web/sessionTimeout", "_eventId=slotsTimedOut")
    LOGIN_FRAGMENT = "/login/signin/creds"
    ALREADY_SIGNED_IN_FRAGMENT = "/login/already-signed-in/"
    BOOKING_HOME_FRAGMENT = "obs-web/pages/home"
    CLAIM_STEP_FRAGMENTS = ("execution=", "_eventId=")

    @staticmethod
    def absolute(link: str, base_url: str = BASE_URL) -> str:
        """Resolve a site-relative link"""
        if link.startswith("http://") or link.startswith("https://"):
            return link
        if not link.startswith("/"):
            link = "/" + link
        return f"{base_url}{link}"

    @classmethod
    def is_timeout(cls, url: str) -> bool:
        return any(fragment in url for fragment in cls.TIMEOUT_FRAGMENTS)

    @classmethod
    def is_login(cls, url: str) -> bool:
        return cls.LOGIN_FRAGMENT in url

    @classmethod
    def is_already_signed_in(cls, url: str) -> bool:
        return cls.ALREADY_SIGNED_IN_FRAGMENT in url

    @classmethod
    def is_claim_step(cls, url: str) -> bool:
        return cls.BOOKING_HOME_FRAGMENT in url and any(
            fragment in url for fragment in cls.CLAIM_STEP_FRAGMENTS
        )


class Selectors:
    """CSS selectors of the booking pages"""

    # Weekly search results
    NEXT_AVAILABLE = "#searchForWeeklySlotsNextAvailable"
    PREVIOUS_AVAILABLE = "#searchForWeeklySlotsPreviousAvailable"
    DATE_RANGE = ".span-7 .centre.bold"
    REFINE_SEARCH = "#refineSearch2"

    # jQuery UI dialogs
    DIALOG = ".ui-dialog"
    DIALOG_CLOSE = ".ui-dialog-titlebar-close"
    DIALOG_CLOSE_FALLBACKS = (
        'button[title="close"]',
        ".ui-icon-closethick",
        ".ui-dialog-titlebar .ui-button",
    )
    BACK_WARNING_DIALOG = (
        '#back-button-warning-dialog, '
        '.ui-dialog[aria-describedby="back-button-warning-dialog"]'
    )
    BACK_WARNING_CLOSE = "#backButtonCloseDialog"

    # Booking confirmation side bar
    RESERVE_BUTTONS = 'a[id^="reserve_"]'
    BOOKED_ROWS = "#orderSideBar tbody tr"
    CONFIRMATION_NOTICE = "div.notice.clockIcon"
    MINUTES_REMAINING = "#minutesToTimeout"
    RETURN_TO_SEARCH = 'a[href*="_eventId=returnToSearchResults"]'
    LOCATION_HEADING = "h3"

    # Booking home form
    TEST_CATEGORY = "#businessBookingTestCategoryRecordId"
    TEST_CENTRE_GROUPS = "#testcentregroups"
    NO_SPECIAL_NEEDS = "#specialNeedsChoice-noneeds"
    SPECIAL_NEEDS = "#specialNeedsChoice-yesneeds"
    BOOK_TEST = "#submitSlotSearch"

    # Login
    USERNAME = "#user_id"
    PASSWORD = "#password"
    LOGIN_SUBMIT = "#continue"
    STAY_SIGNED_IN = "#confirm-Stay"

    # Captcha widgets
    HCAPTCHA = 'iframe[src*="hcaptcha.com"], .h-captcha'
    HCAPTCHA_SITEKEY = "[data-sitekey]"

    # Error pages
    ERROR_BLOCK = ".error"
    PARAGRAPH = "p"
    SESSION_EXPIRED_HEADING = "h1.govuk-heading-xl"
    SESSION_EXPIRED_TEXT = "Your session has expired"
    SYSTEM_ERROR_TEXTS = (
        "Sorry, there's a problem with the system",
        "Please try again later",
    )
