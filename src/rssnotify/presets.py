"""Named keyword and journal presets, plus the default feed catalog."""

from dataclasses import dataclass

WHITELIST = "whitelist"
BLACKLIST = "blacklist"
FEEDS = "feeds"


@dataclass(frozen=True)
class Preset:
    """A named set of values that a collection can absorb in one step."""

    target: str
    values: frozenset


PRESETS: dict[str, Preset] = {
    "uro": Preset(WHITELIST, frozenset({
        "urogenital", "genitourina", "urinary", "renal", "kidney", " bladder",
        "vesical", "urothelial", "prostat", "seminal", "penis", "testic",
        "scrotum", "scrotal",
    })),
    "abdomen": Preset(WHITELIST, frozenset({
        "abdomen", "abdominal", "peritoneum", "peritoneal", "perineal", "perineum",
        " liver", "hepatic", "hepato", "HCC", "biliar", "gallbladder",
        "pancrea", "spleen", "splenic",
        "gastro", "gastric", "duoden", "jejun", "ileum", "ileal",
        "colon", "sigmoid", "rectum", "rectal", "anus", " anal ",
        "uterus", "uterine", "ovary", "ovarian", "adnex", "cervix", "vagina", "cervical ca",
    })),
    "default_blacklist": Preset(BLACKLIST, frozenset({
        "Letter to the Editor", "Erratum for: ", "Editorial Comment",
        "radiomic", "nomogram", "deep learning", "deep-learning", "histogram",
    })),
    "radiology_journals": Preset(FEEDS, frozenset({
        101532453, 101674571, 8302501, 7708173, 9114774, 401260, 101765309,
        8106411, 100956096, 101490689, 8911831, 1306016, 101698198, 8706123,
        101721752,
    })),
}

NEW_COLLECTION_PRESETS = ("default_blacklist",)

_PUBMED_RSS = "https://pubmed.ncbi.nlm.nih.gov/rss/journals/{}/?limit={}&name={}&utm_campaign=journals"

# (name, link) pairs seeded into an empty store
DEFAULT_FEEDS: list[tuple[str, str]] = [
    ("Insights into Imaging", _PUBMED_RSS.format("101532453", 15, "Insights%20Imaging")),
    ("Abdominal Radiology", _PUBMED_RSS.format("101674571", 15, "Abdom%20Radiol%20%28NY%29")),
    ("Radiographics", _PUBMED_RSS.format("8302501", 20, "Radiographics")),
    ("American Journal of Roentgenology (AJR)", _PUBMED_RSS.format("7708173", 15, "AJR%20Am%20J%20Roentgenol")),
    ("European Radiology", _PUBMED_RSS.format("9114774", 15, "Eur%20Radiol")),
    ("Radiology", _PUBMED_RSS.format("0401260", 50, "Radiology")),
    ("Radiological Imaging Cancer", _PUBMED_RSS.format("101765309", 50, "Radiol%20Imaging%20Cancer")),
    ("European Journal of Radiology", _PUBMED_RSS.format("8106411", 10, "Eur%20J%20Radiol")),
    ("Korean Journal of Radiology", _PUBMED_RSS.format("100956096", 20, "Korean%20J%20Radiol")),
    ("Japanese Radiology", _PUBMED_RSS.format("101490689", 10, "Jpn%20J%20Radiol")),
    ("Clinical Imaging", _PUBMED_RSS.format("8911831", 10, "Clin%20Imaging")),
    ("Clinical Radiology", _PUBMED_RSS.format("1306016", 10, "Clin%20Radiol")),
    ("Journal of the Belgian society of radiology", _PUBMED_RSS.format("101698198", 10, "J%20Belg%20Soc%20Radiol")),
    ("Acta Radiologica", _PUBMED_RSS.format("8706123", 10, "Acta%20Radiol")),
    ("European Radiology Exp", _PUBMED_RSS.format("101721752", 15, "Eur%20Radiol%20Exp")),
]


def get_preset(name: str) -> Preset | None:
    """Look up a preset by name, ignoring case."""
    return PRESETS.get(name.strip().lower())


def available_presets() -> list[str]:
    return sorted(PRESETS)
