"""Bilingual (English/French) keyword tables for normalizing vehicle specs."""

from typing import Optional, Sequence, Tuple

# (canonical value, keywords) – first entry with a keyword contained in the input wins
COLORS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("Black", ("black", "noir")),
    ("White", ("white", "blanc", "blanche")),
    ("Silver", ("silver", "argent")),
    ("Gray", ("gray", "grey", "gris")),
    ("Red", ("red", "rouge")),
    ("Blue", ("blue", "bleu")),
    ("Green", ("green", "vert")),
    ("Brown", ("brown", "brun")),
    ("Beige", ("beige",)),
    ("Yellow", ("yellow", "jaune")),
    ("Orange", ("orange",)),
)

FUEL_TYPES: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("Hybrid", ("plug-in", "hybrid", "hybride")),
    ("Electric", ("electric", "électrique", "electrique")),
    ("Diesel", ("diesel",)),
    ("Gasoline", ("gasoline", "gas", "essence", "petrol")),
)

TRANSMISSIONS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("CVT", ("cvt",)),
    ("Automatic", ("automatic", "automatique", "auto")),
    ("Manual", ("manual", "manuelle", "manuel")),
)

BODY_TYPES: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("SUV", ("suv", "vus", "crossover")),
    ("Truck", ("truck", "camion", "pickup", "pick-up")),
    ("Van", ("minivan", "fourgonnette", "fourgon", "van")),
    ("Convertible", ("convertible", "décapotable", "decapotable", "cabriolet")),
    ("Coupe", ("coupe", "coupé")),
    ("Hatchback", ("hatchback", "hatch", "à hayon", "hayon")),
    ("Wagon", ("wagon", "familiale")),
    ("Sedan", ("sedan", "berline")),
)

DRIVETRAINS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("4WD", ("4wd", "4x4")),
    ("AWD", ("awd", "intégrale", "integrale", "all-wheel", "all wheel")),
    ("FWD", ("fwd", "avant", "front-wheel", "front wheel")),
    ("RWD", ("rwd", "arrière", "arriere", "propulsion", "rear-wheel", "rear wheel")),
)

# Model names that give away the body type when no body field is present
_BODY_HINTS: Sequence[Tuple[str, Tuple[str, ...]]] = (
    ("SUV", ("suv", "cr-v", "rav4", "rogue", "escape", "tucson", "santa fe", "cx-5", "equinox")),
    ("Truck", ("truck", "f-150", "silverado", "sierra", "ram 1500", "tacoma", "tundra")),
    ("Van", ("van", "sienna", "odyssey", "caravan", "pacifica")),
    ("Coupe", ("coupe",)),
    ("Wagon", ("wagon",)),
)


def _lookup(value: Optional[str], table) -> Optional[str]:
    if not value:
        return None
    lower = value.strip().lower()
    for canonical, keywords in table:
        if any(keyword in lower for keyword in keywords):
            return canonical
    # Unrecognized values pass through unchanged
    return value.strip()


def normalize_color(value: Optional[str]) -> Optional[str]:
    return _lookup(value, COLORS)


def normalize_fuel_type(value: Optional[str]) -> Optional[str]:
    return _lookup(value, FUEL_TYPES)


def normalize_transmission(value: Optional[str]) -> Optional[str]:
    return _lookup(value, TRANSMISSIONS)


def normalize_body_type(value: Optional[str]) -> Optional[str]:
    return _lookup(value, BODY_TYPES)


def normalize_drivetrain(value: Optional[str]) -> Optional[str]:
    return _lookup(value, DRIVETRAINS)


def detect_body_type(text: Optional[str]) -> Optional[str]:
    """Guess a body type from free text such as the listing title."""
    if not text:
        return None
    lower = text.lower()
    for canonical, keywords in _BODY_HINTS:
        if any(keyword in lower for keyword in keywords):
            return canonical
    return None
