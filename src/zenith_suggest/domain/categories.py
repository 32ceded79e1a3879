from zenith_suggest.models import Category

DEFAULT_ICON = "📊"
DEFAULT_COLOR = "#6B7280"

CATEGORY_ICONS = {
    "Lebensmittel": "🛒",
    "Restaurant": "🍽️",
    "Transport": "🚗",
    "Unterhaltung": "🎬",
    "Online Shopping": "🛍️",
    "Wohnen": "🏠",
    "Nebenkosten": "💡",
    "Versicherung": "🛡️",
    "Gesundheit": "⚕️",
    "Einkommen": "💰",
    "Drogerie": "🧴",
    "Bildung": "📚",
    "Sport": "⚽",
    "Reisen": "✈️",
}

CATEGORY_COLORS = {
    "Lebensmittel": "#10B981",
    "Restaurant": "#F59E0B",
    "Transport": "#3B82F6",
    "Unterhaltung": "#8B5CF6",
    "Online Shopping": "#EC4899",
    "Wohnen": "#6B7280",
    "Nebenkosten": "#F97316",
    "Versicherung": "#14B8A6",
    "Gesundheit": "#EF4444",
    "Einkommen": "#22C55E",
    "Drogerie": "#A855F7",
    "Bildung": "#0EA5E9",
    "Sport": "#84CC16",
    "Reisen": "#F43F5E",
}


def category_icon(category: str) -> str:
    return CATEGORY_ICONS.get(category, DEFAULT_ICON)


def category_color(category: str) -> str:
    return CATEGORY_COLORS.get(category, DEFAULT_COLOR)


def category_info(category: str) -> Category:
    return Category(name=category, color=category_color(category))
