"""
String inflection helpers for model, table and label names.

Model names are snake_case identifiers ("deal_category"); tables are their
plural ("deal_categories"); runtime classes use CamelCase ("DealCategory").
"""

from __future__ import annotations

import re

# Irregular plurals that don't follow standard rules
_IRREGULAR_PLURALS = {
    "person": "people",
    "child": "children",
    "man": "men",
    "woman": "women",
    "datum": "data",
    "medium": "media",
    "criterion": "criteria",
    "index": "indices",
    "matrix": "matrices",
    "status": "statuses",
    "address": "addresses",
}


def pluralize(word: str) -> str:
    """
    Convert a singular snake_case word to its plural form.

    Only the last underscore-separated segment is inflected.

    Examples:
        >>> pluralize("deal")
        'deals'
        >>> pluralize("deal_category")
        'deal_categories'
        >>> pluralize("person")
        'people'
    """
    if not word:
        return word

    head, sep, last = word.rpartition("_")
    if sep:
        return f"{head}_{pluralize(last)}"

    lower_word = word.lower()
    if lower_word in _IRREGULAR_PLURALS:
        return _IRREGULAR_PLURALS[lower_word]

    if lower_word.endswith(("s", "x", "z", "ch", "sh")):
        return word + "es"
    if lower_word.endswith("y"):
        if len(word) > 1 and lower_word[-2] in "aeiou":
            return word + "s"
        return word[:-1] + "ies"
    if lower_word.endswith("fe"):
        return word[:-2] + "ves"
    if lower_word.endswith(("elf", "alf", "olf", "eaf", "oaf", "arf")):
        return word[:-1] + "ves"
    return word + "s"


_IRREGULAR_SINGULARS = {plural: singular for singular, plural in _IRREGULAR_PLURALS.items()}


def singularize(word: str) -> str:
    """
    Convert a plural snake_case word to its singular form.

    Examples:
        >>> singularize("deal_categories")
        'deal_category'
        >>> singularize("people")
        'person'
    """
    if not word:
        return word

    head, sep, last = word.rpartition("_")
    if sep:
        return f"{head}_{singularize(last)}"

    lower_word = word.lower()
    if lower_word in _IRREGULAR_SINGULARS:
        return _IRREGULAR_SINGULARS[lower_word]
    if lower_word in _IRREGULAR_PLURALS:
        return word

    if lower_word.endswith("ies") and len(word) > 3:
        return word[:-3] + "y"
    if lower_word.endswith("ves"):
        return word[:-3] + "f"
    if lower_word.endswith(("ses", "xes", "zes", "ches", "shes")):
        return word[:-2]
    if lower_word.endswith("s") and not lower_word.endswith("ss"):
        return word[:-1]
    return word


def humanize(name: str) -> str:
    """
    Turn an identifier into a label.

    Examples:
        >>> humanize("first_name")
        'First name'
        >>> humanize("company_id")
        'Company'
    """
    text = re.sub(r"_id$", "", name).replace("_", " ").strip()
    return text[:1].upper() + text[1:]


def camelize(name: str) -> str:
    """
    Convert a snake_case name to CamelCase.

    Examples:
        >>> camelize("deal_category")
        'DealCategory'
    """
    return "".join(part[:1].upper() + part[1:] for part in name.split("_") if part)


def underscore(name: str) -> str:
    """
    Convert a CamelCase name to snake_case.

    Examples:
        >>> underscore("DealCategory")
        'deal_category'
    """
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()
