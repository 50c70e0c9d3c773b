# =============================================================================
# Website crawler + rule-based business intelligence
# =============================================================================
#
# - ContentFetcher: fetch a page with a timeout, reduce it to visible text
# - find_important_pages(): pick about/services/contact-style links on the same host
# - BusinessIntelligenceExtractor.analyze(): crawl root + up to 5 pages, classify
#
# Classification is plain keyword counting and regex layering, no model calls.
# =============================================================================

import asyncio
import logging
import re
from typing import Optional
from urllib.parse import urljoin, urlparse

import httpx
from bs4 import BeautifulSoup

from models import BusinessIntelligence

logger = logging.getLogger("seo-analyzer")

USER_AGENT = "SEOAnalyzerBot/1.0"
PAGE_TIMEOUT = 10.0
MAX_PAGE_CHARS = 10_000
MAX_EXTRA_PAGES = 5
MAX_KEYWORDS = 15

UNKNOWN_LOCATION = "Location not specified"
DEFAULT_COUNTRY = "United States"

NOISE_TAGS = ["script", "style", "nav", "header", "footer", "aside", "iframe", "noscript"]

IMPORTANT_PAGE_KEYWORDS = ["about", "service", "product", "contact", "portfolio", "work", "solution", "team"]

# ---------------------------------------------------------------------------
# Vocabularies: declaration order breaks classification ties
# ---------------------------------------------------------------------------

BUSINESS_TYPES: dict[str, list[str]] = {
    "restaurant": [
        "restaurant", "dining", "food", "menu", "chef", "cuisine", "eat", "meal", "kitchen", "bistro", "cafe", "diner",
        "lunch", "dinner", "breakfast", "brunch", "takeaway", "takeout", "delivery", "catering", "buffet",
        "italian", "chinese", "mexican", "indian", "thai", "japanese", "french", "american", "fusion", "ethnic",
        "nepalese", "nepali", "gurkha", "himalayan", "asian", "curry", "spice", "spicy", "traditional",
        "reservation", "booking", "order", "serve", "serving", "taste", "flavor", "dish", "recipe", "cooking",
        "fresh", "delicious", "authentic", "specialty", "signature", "appetizer", "entree", "dessert",
        "atmosphere", "ambiance", "dining experience", "table", "bar", "wine", "beer", "drinks", "cocktail",
    ],
    "law firm": ["law", "legal", "attorney", "lawyer", "court", "litigation", "contract", "legal advice", "law office"],
    "medical practice": [
        "doctor", "medical", "health", "clinic", "hospital", "patient", "treatment", "medicine", "healthcare", "physician",
    ],
    "consulting": ["consulting", "consultant", "advisory", "strategy", "solutions", "expertise", "professional services"],
    "real estate": ["real estate", "property", "home", "house", "realtor", "listing", "buy", "sell", "rent", "mortgage"],
    "technology company": [
        "software", "technology", "tech", "app", "digital", "development", "programming", "it services", "system",
    ],
    "retail": ["shop", "store", "retail", "buy", "purchase", "product", "sale", "shopping", "merchandise"],
    "service provider": ["service", "provider", "maintenance", "repair", "installation", "professional", "expert"],
    "agency": ["agency", "marketing", "advertising", "creative", "design", "brand", "campaign", "media"],
    "education": [
        "school", "education", "learn", "student", "teach", "course", "training", "academic", "university", "college",
    ],
}

INDUSTRY_MAP: dict[str, list[str]] = {
    "restaurant": ["italian", "chinese", "mexican", "indian", "fusion", "seafood", "steakhouse", "fast food", "fine dining"],
    "law firm": [
        "personal injury", "corporate", "family law", "criminal defense", "immigration", "bankruptcy", "real estate law",
    ],
    "medical practice": [
        "cardiology", "dermatology", "pediatrics", "dentistry", "orthopedics", "family medicine", "psychology",
    ],
    "consulting": ["management", "financial", "marketing", "strategy", "business", "operations"],
    "technology company": ["software development", "web development", "mobile apps", "cybersecurity", "cloud computing"],
    "retail": ["fashion", "electronics", "automotive", "home goods", "sporting goods", "jewelry", "beauty"],
}

SERVICE_MAP: dict[str, list[str]] = {
    "law firm": ["legal consultation", "representation", "contract review", "litigation support"],
    "medical practice": ["consultation", "treatment", "diagnosis", "preventive care"],
    "restaurant": ["catering", "delivery", "private dining", "takeout"],
    "real estate": ["buying assistance", "selling support", "market analysis", "property management"],
    "consulting": ["strategy consulting", "business advice", "process improvement", "training"],
    "technology company": ["software development", "system integration", "technical support", "maintenance"],
}

PRODUCT_TERMS = [
    "momo", "momos", "dumpling", "dumplings", "thukpa", "chowmein", "chow mein", "dal bhat", "dal", "bhat",
    "curry", "naan", "roti", "samosa", "samosas", "chili chicken", "butter chicken", "tandoori", "biryani",
    "fried rice", "spring rolls", "spring roll", "sekuwa", "choila", "chatamari", "yomari", "sel roti",
    "pad thai", "tom yum", "pho", "ramen", "sushi", "tempura", "teriyaki", "satay", "laksa", "dim sum",
    "pizza", "burger", "sandwich", "pasta", "salad", "soup", "appetizer", "entree", "dessert", "starter",
    "chicken", "beef", "pork", "lamb", "fish", "seafood", "vegetarian", "vegan", "steak", "wings",
    "coffee", "tea", "juice", "smoothie", "beer", "wine", "cocktail", "drinks", "mocktail", "lassi",
    "product", "item", "goods", "merchandise", "solution", "offering", "package",
    "software", "app", "tool", "platform", "system", "device", "equipment",
]

MENU_CATEGORIES = [
    "appetizer", "appetizers", "starter", "starters", "main", "mains", "entree", "entrees",
    "dessert", "desserts", "drink", "drinks", "beverage", "beverages", "special", "specials",
    "combo", "combos", "platter", "platters", "bowl", "bowls", "wrap", "wraps", "roll", "rolls",
]

AU_STATES = {
    "queensland": "QLD", "new south wales": "NSW", "victoria": "VIC", "south australia": "SA",
    "western australia": "WA", "northern territory": "NT", "tasmania": "TAS", "australian capital territory": "ACT",
}

AU_REGIONS = [
    "sunshine coast", "gold coast", "central coast", "northern rivers", "hunter valley",
    "blue mountains", "snowy mountains", "grampians", "flinders ranges", "barossa valley",
]

AU_CITIES = [
    "sydney", "melbourne", "brisbane", "perth", "adelaide", "canberra", "darwin", "hobart",
    "cairns", "townsville", "geelong", "ballarat", "bendigo", "launceston", "mackay",
    "rockhampton", "toowoomba", "newcastle", "wollongong", "logan", "parramatta",
]

INTERNATIONAL_CITIES = [
    "New York", "Los Angeles", "Chicago", "Houston", "London", "Paris", "Tokyo",
    "Berlin", "Madrid", "Rome", "Amsterdam", "Vienna", "Zurich", "Vancouver",
    "Toronto", "Montreal", "Dublin", "Edinburgh", "Auckland", "Wellington",
]

# ---------------------------------------------------------------------------
# Patterns
# ---------------------------------------------------------------------------

_STOP = r"(?=\s+(?:offering|provides?|delivers?|features?|specializes?|with|for|restaurant|cafe|business|shop|store|office|building)\b|[.,]|$)"
_STREET_SUFFIX = r"(?:street|st|road|rd|avenue|ave|drive|dr|way|lane|ln|court|ct|place|pl)"

STREET_PATTERNS = [
    # "12 ocean street, noosa heads" / "ocean street, noosa heads"
    re.compile(rf"\b(?:\d+\s+)?((?:[a-z]+\s+){{1,3}}?{_STREET_SUFFIX})\b\s*,\s*([a-z][a-z\s]{{1,24}}?){_STOP}"),
    # "12 ocean street noosa heads" needs the street number
    re.compile(rf"\b\d+\s+((?:[a-z]+\s+){{1,3}}?{_STREET_SUFFIX})\b\s+([a-z][a-z\s]{{1,19}}?){_STOP}"),
]

LOCATION_INDICATORS = [
    re.compile(rf"\b(?:located in|based in|situated in|address\s*:)\s*([a-z][a-z\s]{{1,29}}?){_STOP}"),
    re.compile(rf"\b(?:visit us|find us)\s+(?:at|in)\s+([a-z][a-z\s]{{1,29}}?){_STOP}"),
    re.compile(
        r"\b([a-z]+(?:\s[a-z]+)?),\s+(qld|nsw|vic|sa|wa|nt|tas|act|queensland|new south wales|victoria|"
        r"south australia|western australia|northern territory|tasmania|australian capital territory)\b"
    ),
]

_TRAILING_DESCRIPTOR = re.compile(
    r"\s+(?:restaurant|cafe|business|shop|store|office|building|delivers?|offers?|provides?|features?|specializes?).*$"
)
_LEADING_ARTICLE = re.compile(r"^(?:the|our|a|in|at|from|near)\s+")

PRODUCT_PATTERNS = [
    re.compile(r"(?:menu|dishes?|meals?|food|cuisine|specialties|favorites)\s+(?:includes?|features?|offers?|has|:)\s*([^.!?]*)"),
    re.compile(r"(?:we\s+serve|serving|specializing\s+in|famous\s+for|known\s+for)\s+([^.!?]*)"),
    re.compile(r"(?:try\s+our|taste\s+our|enjoy\s+our|order\s+our|homemade)\s+([a-z\s]{3,30})"),
    re.compile(r"(?:products?|offerings?|solutions?|items?)\s+(?:include|are|:)\s*([^.!?]*)"),
]

SERVICE_PATTERNS = [
    re.compile(r"(?:services?|support)\s+(?:include|are|:)\s*([^.!?]*)"),
    re.compile(r"(?:we|our team)\s+(?:provide|offer|deliver|specialize in)\s+([^.!?]*)"),
]

_LIST_SPLIT = re.compile(r",|\band\b|&|/|\||\+")
_STOPWORDS = {"our", "the", "we", "you", "and", "or"}


def _word_re(term: str) -> re.Pattern:
    return re.compile(rf"\b{re.escape(term)}\b", re.IGNORECASE)


def _dedupe(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def extract_domain(url: str) -> str:
    """'https://www.Example.com/path/' → 'www.example.com' (scheme, path and trailing slash stripped)."""
    stripped = re.sub(r"^https?://", "", url.strip(), flags=re.IGNORECASE).rstrip("/")
    return stripped.split("/")[0].split("?")[0].lower()


# ---------------------------------------------------------------------------
# Content fetching
# ---------------------------------------------------------------------------

def html_to_text(html: str) -> str:
    """Visible body text with navigation chrome removed, whitespace collapsed, capped."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(NOISE_TAGS):
        tag.decompose()
    root = soup.body or soup
    text = re.sub(r"\s+", " ", root.get_text(separator=" ")).strip()
    return text[:MAX_PAGE_CHARS]


def find_important_pages(base_url: str, html: str, limit: int = MAX_EXTRA_PAGES) -> list[str]:
    """Same-host links whose href or anchor text mentions an important-page keyword."""
    soup = BeautifulSoup(html, "html.parser")
    base_host = urlparse(base_url).hostname
    pages: list[str] = []
    for a in soup.find_all("a", href=True):
        href = a["href"].strip()
        anchor = a.get_text(strip=True).lower()
        if not any(k in anchor or k in href.lower() for k in IMPORTANT_PAGE_KEYWORDS):
            continue
        full_url = urljoin(base_url, href).split("#")[0]
        parsed = urlparse(full_url)
        if parsed.scheme not in ("http", "https") or parsed.hostname != base_host:
            continue
        if full_url.rstrip("/") == base_url.rstrip("/") or full_url in pages:
            continue
        pages.append(full_url)
        if len(pages) >= limit:
            break
    return pages


class ContentFetcher:
    """Fetch raw HTML for a URL. Never raises; a failed fetch yields None."""

    def __init__(self, timeout: float = PAGE_TIMEOUT, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def fetch_html(self, url: str) -> Optional[str]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
                transport=self._transport,
            ) as http:
                resp = await http.get(url)
                resp.raise_for_status()
            return resp.text
        except httpx.HTTPError as e:
            logger.warning(f"Crawl failed for {url}: {type(e).__name__}: {e}")
            return None

    async def fetch_text(self, url: str) -> str:
        html = await self.fetch_html(url)
        if not html:
            return ""
        text = html_to_text(html)
        logger.info(f"Crawled {url}: {len(text)} characters")
        return text


# ---------------------------------------------------------------------------
# Classification helpers (corpus is lowercased)
# ---------------------------------------------------------------------------

def detect_business_type(corpus: str) -> str:
    best_type, best_score = "business", 0
    scores: dict[str, int] = {}
    for btype, vocab in BUSINESS_TYPES.items():
        score = sum(len(_word_re(term).findall(corpus)) for term in vocab)
        scores[btype] = score
        if score > best_score:
            best_type, best_score = btype, score
    ranked = sorted(((s, t) for t, s in scores.items() if s), reverse=True)
    if ranked:
        logger.info("Business type scores: " + ", ".join(f"{t}={s}" for s, t in ranked[:5]))
    return best_type


def detect_industry(corpus: str, business_type: str) -> str:
    for term in INDUSTRY_MAP.get(business_type, []):
        if _word_re(term).search(corpus):
            return term
    return business_type


def _clean_place(raw: str) -> str:
    place = _TRAILING_DESCRIPTOR.sub("", raw.strip())
    place = _LEADING_ARTICLE.sub("", place).strip(" ,")
    return place


def extract_location(corpus: str) -> str:
    """Layered lookup, first match wins: street address, phrase/state, region, AU city, world city."""
    for pattern in STREET_PATTERNS:
        for m in pattern.finditer(corpus):
            street, suburb = m.group(1).strip(), _clean_place(m.group(2))
            if len(suburb) > 2:
                return f"{street.title()}, {suburb.title()}"

    for pattern in LOCATION_INDICATORS:
        for m in pattern.finditer(corpus):
            place = _clean_place(m.group(1))
            if not 2 < len(place) < 50:
                continue
            if pattern.groups > 1 and m.group(2):
                state = m.group(2)
                return f"{place.title()}, {AU_STATES.get(state, state.upper())}"
            return place.title()

    for region in AU_REGIONS:
        if _word_re(region).search(corpus):
            return region.title()

    for city in AU_CITIES:
        if _word_re(city).search(corpus):
            return city.title()

    for city in INTERNATIONAL_CITIES:
        if _word_re(city).search(corpus):
            return city

    return UNKNOWN_LOCATION


def _split_list(fragment: str, min_len: int, max_len: int) -> list[str]:
    items = []
    for part in _LIST_SPLIT.split(fragment):
        item = re.sub(r"[^a-z\s]", "", part).strip()
        item = re.sub(r"\s+", " ", item)
        if min_len <= len(item) <= max_len and item not in _STOPWORDS:
            items.append(item)
    return items


def extract_products(corpus: str) -> list[str]:
    products = [term for term in PRODUCT_TERMS if re.search(rf"\b{re.escape(term)}s?\b", corpus)]
    for pattern in PRODUCT_PATTERNS:
        for m in pattern.finditer(corpus):
            products.extend(_split_list(m.group(1), 3, 39))
    products.extend(c for c in MENU_CATEGORIES if _word_re(c).search(corpus))
    return [p for p in _dedupe(p.strip() for p in products) if 1 < len(p) < 50][:20]


def extract_services(corpus: str, business_type: str) -> list[str]:
    services = list(SERVICE_MAP.get(business_type, []))
    for pattern in SERVICE_PATTERNS:
        for m in pattern.finditer(corpus):
            services.extend(_split_list(m.group(1), 4, 49))
    return _dedupe(services)[:5]


def generate_keywords(
    business_type: str,
    industry: str,
    location: str,
    products: list[str],
    services: list[str],
) -> list[str]:
    """Ranked, deduplicated search phrases; location variants only when a location is known."""
    loc = location.split(",")[0].strip() if location != UNKNOWN_LOCATION else ""

    def near(term: str) -> list[str]:
        return [f"{term} {loc}"] if loc else []

    keywords = [business_type]
    if industry != business_type:
        keywords.append(industry)
    keywords += near(business_type) + near(industry)
    if loc:
        keywords.append(f"best {business_type} {loc}")
    for offering in services + products:
        if offering and len(offering) < 30:
            keywords += [offering] + near(offering)
    keywords += [
        f"{business_type} near me",
        f"{business_type} services",
        f"professional {business_type}",
        f"{business_type} company",
    ]
    return [k for k in _dedupe(keywords) if 2 < len(k) < 60][:MAX_KEYWORDS]


def describe_business(business_type: str, location: str, products: list[str], services: list[str]) -> str:
    text = business_type[:1].upper() + business_type[1:]
    if location not in (DEFAULT_COUNTRY, UNKNOWN_LOCATION):
        text += f" based in {location}"
    if products:
        text += f" offering {', '.join(products[:3])}"
    if services:
        text += f" providing {', '.join(services[:3])}"
    return text


def hostname_profile(url: str) -> BusinessIntelligence:
    """Best-effort profile from the hostname alone, used when nothing could be crawled."""
    domain = extract_domain(url)
    if domain.startswith("www."):
        domain = domain[4:]
    base = re.sub(r"[-_]", " ", domain.split(".")[0]) or "business"
    return BusinessIntelligence(
        business_type=f"{base} business",
        industry=base,
        location=DEFAULT_COUNTRY,
        products=[],
        services=[f"{base} services"],
        keywords=[base, f"{base} services", f"best {base}"],
        description=f"Business website for {base}",
    )


def classify(pages: list[str]) -> BusinessIntelligence:
    """Build a BusinessIntelligence profile from the text of one or more pages."""
    corpus = " ".join(pages).lower()
    business_type = detect_business_type(corpus)
    industry = detect_industry(corpus, business_type)
    location = extract_location(corpus)
    products = extract_products(corpus)
    services = extract_services(corpus, business_type)
    return BusinessIntelligence(
        business_type=business_type,
        industry=industry,
        location=location,
        products=products,
        services=services,
        keywords=generate_keywords(business_type, industry, location, products, services),
        description=describe_business(business_type, location, products, services),
    )


# ---------------------------------------------------------------------------
# Extractor
# ---------------------------------------------------------------------------

class BusinessIntelligenceExtractor:
    def __init__(self, fetcher: Optional[ContentFetcher] = None):
        self.fetcher = fetcher or ContentFetcher()

    async def analyze(self, url: str) -> BusinessIntelligence:
        """Crawl the site and classify it. Never raises."""
        logger.info(f"Analysing website content for {url}")
        try:
            root_html = await self.fetcher.fetch_html(url)
            if not root_html:
                raise LookupError("root page returned no content")

            pages = [html_to_text(root_html)]
            extra_urls = find_important_pages(url, root_html)
            logger.info(f"Found {len(extra_urls)} important pages to crawl")
            pages += await asyncio.gather(*(self.fetcher.fetch_text(u) for u in extra_urls))

            if not any(pages):
                raise LookupError("no text content found")
            intel = classify(pages)
        except Exception as e:
            logger.warning(f"Website analysis failed for {url}, using hostname profile: {e}")
            return hostname_profile(url)

        logger.info(f"Business intelligence: {intel.business_type} ({intel.industry}) in {intel.location}")
        return intel
