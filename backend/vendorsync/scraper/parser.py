"""HTML parsing and data extraction for vendor listing and detail pages.

Every vehicle field is described by an ordered list of strategies. The
first strategy whose raw value survives the field's converter wins; fields
that no strategy can fill fall back to a default instead of failing the
record. Only a page with neither a year nor a make is rejected.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Sequence
from urllib.parse import urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from vendorsync.errors import ExtractionError
from vendorsync.schemas import VendorVehicle
from vendorsync.scraper.normalize import (
    detect_body_type,
    normalize_body_type,
    normalize_color,
    normalize_drivetrain,
    normalize_fuel_type,
    normalize_transmission,
)
from vendorsync.scraper.utils import synthesize_stock_number, synthesize_vin

logger = logging.getLogger(__name__)

MAX_IMAGES = 15
KM_PER_MILE = 1.60934

IMAGE_ATTRIBUTES = ("src", "data-src", "data-lazy-src")
IMAGE_DENYLIST = (
    "logo", "icon", "badge", "thumb", "placeholder", "spinner", "loading",
    "favicon", "pixel", "spacer", "blank", "1x1", "sprite",
    "carfax", "carproof", "autocheck", "facebook.com", "google", "doubleclick",
    ".svg", "data:image",
)

LISTING_KEYWORDS = ("/vehicle/", "/vehicles/", "/inventory/", "/vdp/", "/details/", "/cars/")

_YEAR_RE = re.compile(r"\b((?:19|20)\d{2})\b")
_TITLE_RE = re.compile(r"\b((?:19|20)\d{2})\s+([A-Za-zÀ-ÿ][\w\-]*)\s*(.*)$")
_VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
_NUMBER_RE = re.compile(r"\d[\d\s,.  ']*")
_LABEL_TAGS = ["dt", "th", "td", "label", "strong", "b", "h4", "h5", "span"]
_VALUE_TAGS = ["dd", "td", "span", "div", "p"]


# ── Page wrapper ─────────────────────────────────────────────────────────────

class DetailPage:
    """Parsed detail page with the lookups the strategies share."""

    def __init__(self, html: str, url: str, base_url: Optional[str] = None):
        self.url = url
        self.base_url = (base_url or _origin(url)).rstrip("/")
        self.soup = BeautifulSoup(html, "lxml")
        for tag in self.soup(["script", "style"]):
            tag.decompose()
        self.lines = [
            line.strip() for line in self.soup.get_text("\n").splitlines() if line.strip()
        ]
        self.text = " ".join(self.lines)

        title_el = self.soup.select_one(
            "h1, h2, .vehicle-title, [class*='vehicle-name'], [class*='vdp-title']"
        )
        self.title = title_el.get_text(" ", strip=True) if title_el else None
        self.title_parts = _parse_vehicle_title(self.title) if self.title else {}

    def labeled_value(self, labels: Sequence[str]) -> Optional[str]:
        """
        Find a field value by its label.

        Tries label elements followed by a sibling value element first
        (``<dt>Année</dt><dd>2021</dd>``, ``<h4>Marque</h4><p>Toyota</p>``),
        then text lines shaped ``Label: value`` or a label line followed by
        the value line.
        """
        wanted = [label.lower() for label in labels]

        for el in self.soup.find_all(_LABEL_TAGS):
            text = _label_text(el.get_text(" ", strip=True))
            if text not in wanted:
                continue
            value_el = el.find_next_sibling(_VALUE_TAGS)
            if value_el:
                value = value_el.get_text(" ", strip=True)
                if value and len(value) < 200:
                    return value

        for label in wanted:
            pattern = re.compile(
                rf"^{re.escape(label)}\s*(?:[:\-–]\s*(?P<value>.+)|:?\s*$)", re.IGNORECASE
            )
            for idx, line in enumerate(self.lines):
                match = pattern.match(line)
                if not match:
                    continue
                value = match.group("value")
                if value is None and idx + 1 < len(self.lines):
                    value = self.lines[idx + 1]
                if value and len(value) < 200 and _label_text(value) not in wanted:
                    return value.strip()
        return None


# ── Strategies ───────────────────────────────────────────────────────────────

class Labeled:
    """Vendor structured markup: a label element or line followed by its value."""

    def __init__(self, *labels: str):
        self.labels = labels

    def __call__(self, page: DetailPage) -> Optional[str]:
        return page.labeled_value(self.labels)


class TitlePart:
    """One component of a ``YEAR MAKE MODEL TRIM`` title."""

    def __init__(self, key: str):
        self.key = key

    def __call__(self, page: DetailPage) -> Optional[str]:
        value = page.title_parts.get(self.key)
        return str(value) if value is not None else None


class Selector:
    """First element matching a CSS selector; ``data-*`` value preferred over text."""

    def __init__(self, *selectors: str, attribute: Optional[str] = None):
        self.selectors = selectors
        self.attribute = attribute

    def __call__(self, page: DetailPage) -> Optional[str]:
        for selector in self.selectors:
            el = page.soup.select_one(selector)
            if not el:
                continue
            if self.attribute and el.get(self.attribute):
                return el[self.attribute]
            text = el.get_text(" ", strip=True)
            if text:
                return text
        return None


class Pattern:
    """Regex over the visible page text."""

    def __init__(self, regex: str, group: int = 0, flags: int = re.IGNORECASE):
        self.regex = re.compile(regex, flags)
        self.group = group

    def __call__(self, page: DetailPage) -> Optional[str]:
        match = self.regex.search(page.text)
        return match.group(self.group) if match else None


class TitleHint:
    """Body type guessed from model names in the title."""

    def __call__(self, page: DetailPage) -> Optional[str]:
        return detect_body_type(page.title)


class Default:
    def __init__(self, value: str):
        self.value = value

    def __call__(self, page: DetailPage) -> Optional[str]:
        return self.value


Strategy = Callable[[DetailPage], Optional[str]]


class FieldSpec:
    def __init__(self, strategies: Sequence[Strategy], convert: Callable = None):
        self.strategies = strategies
        self.convert = convert or _clean_text

    def extract(self, page: DetailPage):
        for strategy in self.strategies:
            raw = strategy(page)
            if not raw:
                continue
            value = self.convert(raw)
            if value not in (None, ""):
                return value
        return None


# ── Converters ───────────────────────────────────────────────────────────────

def _clean_text(raw: str) -> Optional[str]:
    value = " ".join(raw.split())
    return value if value and len(value) <= 100 else None


def _parse_year(raw: str) -> Optional[int]:
    match = _YEAR_RE.search(raw)
    return int(match.group(1)) if match else None


def _parse_vin(raw: str) -> Optional[str]:
    value = re.sub(r"[\s-]", "", raw).upper()
    return value if _VIN_RE.match(value) else None


def _parse_stock(raw: str) -> Optional[str]:
    value = raw.strip().split()[0] if raw.strip() else ""
    value = value.lstrip("#:")
    return value if value and len(value) <= 50 else None


def parse_whole_number(text: Optional[str]) -> Optional[int]:
    """
    Parse '$24,900', '24 900 $' or '28,995.99' into whole currency units.

    Thousands separators, currency symbols and a trailing decimal part are
    dropped. Returns None when the text holds no digits.
    """
    if not text:
        return None
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    token = match.group().strip()
    token = re.sub(r"[.,]\d{1,2}$", "", token)
    digits = re.sub(r"\D", "", token)
    return int(digits) if digits else None


def _parse_price(raw: str) -> Optional[int]:
    return parse_whole_number(raw)


def _parse_odometer(raw: str) -> Optional[int]:
    value = parse_whole_number(raw)
    if value is None:
        return None
    if "mile" in raw.lower():
        value = round(value * KM_PER_MILE)
    return value


def _normalized(func):
    def convert(raw: str) -> Optional[str]:
        cleaned = _clean_text(raw)
        return func(cleaned) if cleaned else None
    return convert


FIELDS: Dict[str, FieldSpec] = {
    "year": FieldSpec(
        [Labeled("year", "année", "annee"), TitlePart("year")], _parse_year,
    ),
    "make": FieldSpec([Labeled("make", "marque"), TitlePart("make")]),
    "model": FieldSpec([Labeled("model", "modèle", "modele"), TitlePart("model")]),
    "trim": FieldSpec([Labeled("trim", "version", "finition"), TitlePart("trim")]),
    "vin": FieldSpec(
        [
            Labeled("vin", "vin #", "niv", "numéro de série"),
            Pattern(r"\b(?:VIN|NIV)\s*[:#]?\s*([A-HJ-NPR-Z0-9]{17})\b", group=1),
            Pattern(r"\b([A-HJ-NPR-Z0-9]{17})\b", group=1, flags=0),
        ],
        _parse_vin,
    ),
    "stock_number": FieldSpec(
        [
            Labeled("stock", "stock #", "stock no", "stock number", "no de stock",
                    "numéro de stock", "# de stock"),
            Pattern(r"(?:Stock|Numéro de stock)\s*(?:#|no\.?)?\s*[:#]\s*([A-Z0-9-]+)", group=1),
        ],
        _parse_stock,
    ),
    "price": FieldSpec(
        [
            Labeled("price", "our price", "sale price", "selling price", "prix",
                    "notre prix", "prix de vente"),
            Selector("[data-price]", attribute="data-price"),
            Selector("[class*='price-num']", "[class*='price']"),
            Pattern(r"\$\s*\d[\d,\s ]*|\d[\d\s ,]*\s*\$"),
        ],
        _parse_price,
    ),
    "odometer": FieldSpec(
        [
            Labeled("mileage", "odometer", "kilométrage", "kilometrage", "odomètre", "km"),
            Pattern(r"\d{1,3}(?:[\s, ]?\d{3})*\s*(?:km|kilomètres?|miles?)\b"),
        ],
        _parse_odometer,
    ),
    "color": FieldSpec(
        [Labeled("exterior color", "ext. color", "color", "colour", "couleur extérieure",
                 "couleur", "extérieur")],
        _normalized(normalize_color),
    ),
    "fuel_type": FieldSpec(
        [Labeled("fuel type", "fuel", "type de carburant", "carburant"), Default("Gasoline")],
        _normalized(normalize_fuel_type),
    ),
    "transmission": FieldSpec(
        [Labeled("transmission", "boîte", "boîte de vitesses", "boite")],
        _normalized(normalize_transmission),
    ),
    "drivetrain": FieldSpec(
        [Labeled("drivetrain", "drive type", "traction", "entraînement", "entrainement")],
        _normalized(normalize_drivetrain),
    ),
    "body_type": FieldSpec(
        [
            Labeled("body style", "body type", "body", "type de carrosserie", "carrosserie"),
            TitleHint(),
            Default("Sedan"),
        ],
        _normalized(normalize_body_type),
    ),
}


# ── Detail page ──────────────────────────────────────────────────────────────

def parse_vehicle_detail(
    html: str,
    source_url: str,
    base_url: Optional[str] = None,
    id_prefix: str = "VND",
) -> VendorVehicle:
    """
    Parse a vehicle detail page into a VendorVehicle.

    Raises ExtractionError when neither a year nor a make can be located.
    Missing VIN and stock number are synthesized so the same vehicle keeps
    the same identity across runs. A stand-in VIN is derived from the
    vendor's stock number when the page shows one, so it survives the
    vendor moving the listing to a new URL.
    """
    page = DetailPage(html, source_url, base_url)
    data = {name: field.extract(page) for name, field in FIELDS.items()}

    if data["year"] is None and not data["make"]:
        raise ExtractionError(source_url, "no year or make found")

    vin = data["vin"] or synthesize_vin(id_prefix, data["stock_number"] or source_url)
    stock_number = data["stock_number"] or synthesize_stock_number(id_prefix, source_url)
    title = page.title or " ".join(
        str(part) for part in (data["year"], data["make"], data["model"]) if part
    )

    return VendorVehicle(
        vin=vin,
        stock_number=stock_number,
        make=data["make"],
        model=data["model"],
        trim=data["trim"],
        year=data["year"],
        price=data["price"] or 0,
        odometer=data["odometer"] or 0,
        body_type=data["body_type"],
        color=data["color"],
        fuel_type=data["fuel_type"],
        transmission=data["transmission"],
        drivetrain=data["drivetrain"],
        title=title,
        description=title,
        images=extract_images(page.soup, page.base_url),
        source_url=source_url,
    )


def _parse_vehicle_title(title: str) -> Dict:
    """Parse 'YEAR MAKE MODEL TRIM' from a title string."""
    result: Dict = {}
    match = _TITLE_RE.search(title.strip())
    if not match:
        return result
    result["year"] = int(match.group(1))
    result["make"] = match.group(2)
    rest = match.group(3).split()
    if rest:
        result["model"] = rest[0]
    if len(rest) > 1:
        result["trim"] = " ".join(rest[1:])
    return result


def extract_images(soup: BeautifulSoup, base_url: str) -> List[str]:
    """Collect vehicle photo URLs, resolved against the vendor origin."""
    photos: List[str] = []
    seen = set()
    base = base_url.rstrip("/") + "/"

    for attr in IMAGE_ATTRIBUTES:
        tags = soup.find_all("img", attrs={attr: True}) if attr == "src" else soup.find_all(attrs={attr: True})
        for tag in tags:
            src = (tag.get(attr) or "").strip()
            if not src:
                continue
            src_lower = src.lower()
            if any(skip in src_lower for skip in IMAGE_DENYLIST):
                continue
            try:
                url = urljoin(base, src)
            except ValueError:
                logger.debug(f"Skipping unparseable image URL: {src}")
                continue
            if not url.startswith("http"):
                continue
            if url in seen:
                continue
            seen.add(url)
            photos.append(url)
            if len(photos) >= MAX_IMAGES:
                return photos
    return photos


# ── Listing pages ────────────────────────────────────────────────────────────

def parse_listing_page(html: str, page_url: str, link_pattern: Optional[str] = None) -> List[str]:
    """
    Return absolute detail-page URLs found on a listing page, in page order.

    With a ``link_pattern`` only same-host links whose path matches it are
    kept; without one, links that look like vehicle pages are.
    """
    soup = BeautifulSoup(html, "lxml")
    host = urlparse(page_url).netloc
    pattern = re.compile(link_pattern) if link_pattern else None
    urls: List[str] = []
    seen = set()

    for link in soup.find_all("a", href=True):
        href = link["href"].strip()
        if not href or href.startswith(("#", "mailto:", "tel:", "javascript:")):
            continue
        try:
            parsed = urlparse(urljoin(page_url, href))
        except ValueError:
            logger.debug(f"Skipping unparseable link: {href}")
            continue
        if parsed.netloc != host:
            continue
        if pattern:
            if not pattern.search(parsed.path):
                continue
        elif not _looks_like_vehicle_path(parsed.path):
            continue
        url = urlunparse(parsed._replace(fragment=""))
        if url not in seen:
            seen.add(url)
            urls.append(url)
    return urls


def _looks_like_vehicle_path(path: str) -> bool:
    lower = path.lower()
    if not any(keyword in lower for keyword in LISTING_KEYWORDS):
        return False
    # Skip the listing index itself, e.g. "/inventory/"
    return len([part for part in lower.split("/") if part]) >= 2


def find_next_page_url(html: str) -> Optional[str]:
    """Find the URL for the next page of listings."""
    soup = BeautifulSoup(html, "lxml")

    next_link = (
        soup.select_one("a.next")
        or soup.select_one("a[rel='next']")
        or soup.select_one("[class*='next'] a")
        or soup.select_one("a[aria-label='Next']")
        or soup.select_one("a[aria-label='Suivant']")
        or soup.select_one("li.next a")
    )

    if next_link and next_link.get("href"):
        return next_link["href"]

    # Numbered pagination: the sibling after the active page
    active = soup.select_one(".pagination .active, .pagination .current")
    if active:
        next_sib = active.find_next_sibling()
        if next_sib:
            link = next_sib.find("a", href=True) if next_sib.name != "a" else next_sib
            if link and link.get("href"):
                return link["href"]

    return None


def _label_text(text: str) -> str:
    return " ".join(text.lower().split()).rstrip(":").strip()


def _origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"
