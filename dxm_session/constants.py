"""Dianxiaomi URLs, CSS selectors, probe request and login heuristics."""

# ── URLs ─────────────────────────────────────────────────────────────────────

DXM_BASE = "https://www.dianxiaomi.com"
DXM_LOGIN_URL = f"{DXM_BASE}/"
DXM_PROBE_URL = f"{DXM_BASE}/order/exportPackageOrder.json"
DXM_ORDER_PAGE_URL = f"{DXM_BASE}/order.htm"

# Any of these in the URL after submit means we landed inside the app.
POST_LOGIN_URL_PATTERNS = (
    "/home.htm",
    "/index.htm",
    "/dashboard",
    "/main.htm",
)

# ── CSS Selectors ────────────────────────────────────────────────────────────

SELECTORS = {
    # Login form
    "login_username": "#exampleInputName",
    "login_password": "#exampleInputPassword",
    "captcha_image": 'img[src*="/verify/code.htm"]',
    "login_error": ".alert-danger",
}

# Tried in order; the first one present on the page is used.
CAPTCHA_INPUT_SELECTORS = [
    "#exampleInputCaptcha",
    'input[name="captcha"]',
    'input[placeholder*="验证码"]',
    'input[placeholder*="captcha"]',
    ".captcha-input",
    "#captcha",
]

SUBMIT_SELECTORS = [
    'button[type="submit"]',
    'input[type="submit"]',
    ".btn-primary",
    "button.btn",
    "#loginBtn",
    "button.btn-primary",
    ".login-btn",
    "form button",
]

# ── Browser ──────────────────────────────────────────────────────────────────

DESKTOP_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

VIEWPORT = {"width": 1280, "height": 800}

# Server-safe flags for headless Chromium on Linux hosts.
CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-web-security",
    "--disable-features=VizDisplayCompositor",
]

# ── Cookie Probe ─────────────────────────────────────────────────────────────

# A dummy export request: only a logged-in session gets a JSON body with "uuid".
PROBE_FORM = {
    "templateId": "-1",
    "exportKeys": "test",
    "orderField": "order_create_time",
    "startTime": "2025-01-01 00:00:00",
    "endTime": "2025-01-01 23:59:59",
    "timeType": "1",
    "exportStyle": "0",
    "isVoided": "-1",
    "ruleId": "-1",
    "requestLocation": "0",
    "isSearch": "1",
}

PROBE_SUCCESS_FIELD = "uuid"

PROBE_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded; charset=UTF-8",
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "X-Requested-With": "XMLHttpRequest",
    "Referer": DXM_ORDER_PAGE_URL,
}

# ── Captcha ──────────────────────────────────────────────────────────────────

OCR_SOURCE = "tencent-ocr"
CAPTCHA_NO_TEXT = "NONE"
CAPTCHA_EMPTY_TEXT = "EMPTY"

# ── Alerts ───────────────────────────────────────────────────────────────────

ALERT_HINTS = [
    "Check that the host has network connectivity",
    "Check that www.dianxiaomi.com is reachable",
    "Check that the login credentials are still correct",
    "Check that the host has enough memory/CPU to run a headless browser",
]
