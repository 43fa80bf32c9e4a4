"""Keyword heuristics deciding how a new UI fragment relates to the current UI."""

import re
from typing import List, Tuple

from .ui_merge import MergeIntent

# Messages produced after a write action completes; the confirmation UI
# starts a fresh surface.
CONFIRMATION_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(?:order|invoice|item|contact|customer|record)s?\s+(?:was\s+|has been\s+)?"
        r"(?:created|saved|updated|deleted|imported)\b",
        r"\b(?:saved|created|imported|completed)\s+successfully\b",
        r"\boperation\s+(?:completed|successful)\b",
        r"\b(?:ordine|fattura|articolo|contatto|cliente)\s+(?:è\s+stat[oa]\s+)?"
        r"(?:creat[oa]|salvat[oa]|aggiornat[oa]|eliminat[oa]|importat[oa])\b",
        r"\b(?:salvat[oa]|creat[oa]|completat[oa])\s+con\s+successo\b",
        r"\boperazione\s+completata\b",
    )
]

KEYWORD_CLASSES: List[Tuple[MergeIntent, List[re.Pattern]]] = [
    (MergeIntent.REPLACE, [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\b(?:recreate|rebuild|redo)\b",
            r"\bfrom\s+scratch\b",
            r"\bstart\s+over\b",
            r"\b(?:ricrea|rifai|ricostruisci)\b",
            r"\bda\s+(?:zero|capo)\b",
        )
    ]),
    (MergeIntent.ADD, [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\balso\s+(?:show|add|include|display)\b",
            r"\b(?:add|include|append)\b",
            r"\b(?:aggiungi|includi|inserisci)\b",
            r"\b(?:mostra|fammi\s+vedere)\s+anche\b",
            r"\banche\b",
        )
    ]),
    (MergeIntent.MODIFY, [
        re.compile(p, re.IGNORECASE)
        for p in (
            r"\b(?:change|modify|update|edit|remove|delete|replace|sort|filter)\b",
            r"\b(?:cambia|modifica|aggiorna|rimuovi|elimina|togli|sostituisci|ordina|filtra)\b",
        )
    ]),
]


def detect_merge_intent(prompt: str, has_base: bool) -> MergeIntent:
    """Classify a user prompt; forced to NEW when there is no current UI."""
    if not has_base:
        return MergeIntent.NEW
    text = prompt or ""
    if any(p.search(text) for p in CONFIRMATION_PATTERNS):
        return MergeIntent.NEW
    for intent, patterns in KEYWORD_CLASSES:
        if any(p.search(text) for p in patterns):
            return intent
    # a follow-up question with a UI on screen extends it
    return MergeIntent.ADD
