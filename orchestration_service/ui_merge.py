"""
UI Merge Engine.

Combines the previous turn's UI document (base) with a newly generated
fragment. Strategies, first applicable wins:

1. REPLACE:<id> ... END_REPLACE markers
2. INSERT_AFTER:<id> ... END_INSERT markers (only when there is no REPLACE)
3. fallback without markers: leading id section, matching title, same
   component class with similar size, append

New/Replace intent or an absent base returns the fragment unchanged. The merge
is total: any internal error degrades to a plain append, never to lost content.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from . import markup
from .config import get_settings
from .metrics import ui_merges_total

logger = logging.getLogger(__name__)

_REPLACE_RE = re.compile(
    r"(?:<!--\s*)?REPLACE:\s*([\w.:]+(?:-(?!->)[\w.:]*)*)\s*(?:-->)?(.*?)(?:<!--\s*)?END_REPLACE\s*(?:-->)?",
    re.DOTALL,
)
_INSERT_RE = re.compile(
    r"(?:<!--\s*)?INSERT_AFTER:\s*([\w.:]+(?:-(?!->)[\w.:]*)*)\s*(?:-->)?(.*?)(?:<!--\s*)?END_INSERT\s*(?:-->)?",
    re.DOTALL,
)

APPEND_SEPARATOR = "\n\n"
INSERT_SEPARATOR = "\n"


class MergeIntent(str, Enum):
    NEW = "new"
    ADD = "add"
    MODIFY = "modify"
    REPLACE = "replace"


class MergeStrategy(str, Enum):
    FRAGMENT = "fragment"
    KEEP_BASE = "keep_base"
    MARKER_REPLACE = "marker_replace"
    MARKER_INSERT = "marker_insert"
    SECTION_ID = "section_id"
    SECTION_TITLE = "section_title"
    COMPONENT_CLASS = "component_class"
    APPEND = "append"


@dataclass(frozen=True)
class MergeResult:
    document: str
    strategy: MergeStrategy


def extract_markers(fragment: str, pattern: re.Pattern) -> List[Tuple[str, str]]:
    return [(m.group(1), m.group(2).strip()) for m in pattern.finditer(fragment)]


def _similar_size(a: str, b: str, tolerance: float) -> bool:
    longest = max(len(a), len(b))
    if longest == 0:
        return True
    return abs(len(a) - len(b)) / longest < tolerance


class UIMergeEngine:
    def __init__(self, size_tolerance: Optional[float] = None):
        self.size_tolerance = float(size_tolerance if size_tolerance is not None
                                    else get_settings().MERGE_SIZE_TOLERANCE)

    def merge(self, base: Optional[str], fragment: str, intent: MergeIntent = MergeIntent.ADD) -> MergeResult:
        if not base or intent in (MergeIntent.NEW, MergeIntent.REPLACE):
            result = MergeResult(fragment, MergeStrategy.FRAGMENT)
        elif not fragment or not fragment.strip():
            result = MergeResult(base, MergeStrategy.KEEP_BASE)
        else:
            try:
                result = self._merge_into(base, fragment)
            except Exception:
                logger.exception("ui merge failed, appending fragment instead")
                result = MergeResult(self._plain_append(base, fragment), MergeStrategy.APPEND)
        ui_merges_total.labels(strategy=result.strategy.value).inc()
        logger.info("ui merge (%s intent) -> %s", intent.value, result.strategy.value)
        return result

    @staticmethod
    def _plain_append(base: str, fragment: str) -> str:
        doc = markup.Document([markup.Text(base)])
        markup.append(doc, [markup.Text(fragment)], APPEND_SEPARATOR)
        return markup.serialize(doc)

    def _merge_into(self, base: str, fragment: str) -> MergeResult:
        replaces = extract_markers(fragment, _REPLACE_RE)
        if replaces:
            return MergeResult(self._apply_replaces(base, replaces), MergeStrategy.MARKER_REPLACE)
        inserts = extract_markers(fragment, _INSERT_RE)
        if inserts:
            return MergeResult(self._apply_inserts(base, inserts), MergeStrategy.MARKER_INSERT)
        return self._fallback(base, fragment)

    def _apply_replaces(self, base: str, blocks: List[Tuple[str, str]]) -> str:
        doc = markup.parse(base)
        for target, content in blocks:
            nodes = markup.parse(content).children
            region = markup.find_region(doc, target)
            if region is not None:
                markup.replace_region_body(region, [markup.Text("\n")] + nodes + [markup.Text("\n")])
                continue
            span = markup.find_addressable(doc, target)
            if span is not None:
                markup.replace_span(span, nodes)
            else:
                logger.info("REPLACE target '%s' not found in base; appending", target)
                markup.append(doc, nodes, APPEND_SEPARATOR)
        return markup.serialize(doc)

    def _apply_inserts(self, base: str, blocks: List[Tuple[str, str]]) -> str:
        doc = markup.parse(base)
        for target, content in blocks:
            nodes = markup.parse(content).children
            span = markup.find_addressable(doc, target)
            if span is not None:
                markup.insert_after(span, [markup.Text(INSERT_SEPARATOR)] + nodes)
            else:
                logger.info("INSERT_AFTER target '%s' not found in base; appending", target)
                markup.append(doc, nodes, APPEND_SEPARATOR)
        return markup.serialize(doc)

    def _fallback(self, base: str, fragment: str) -> MergeResult:
        doc = markup.parse(base)
        frag_doc = markup.parse(fragment)
        frag_nodes = [markup.Text(fragment.strip())]

        lead = markup.leading_element(frag_doc)
        section_id = lead.attr("id") if lead is not None else None
        if section_id:
            # only a real id match; class tokens or regions sharing the name are other content
            span = markup.find_by_attr(doc, "id", section_id)
            if span is not None:
                markup.replace_span(span, frag_nodes)
                return MergeResult(markup.serialize(doc), MergeStrategy.SECTION_ID)
            markup.append(doc, [markup.Text(fragment)], APPEND_SEPARATOR)
            return MergeResult(markup.serialize(doc), MergeStrategy.APPEND)

        title = markup.first_titled(frag_doc)
        if title:
            span = markup.find_by_title(doc, title)
            if span is not None:
                markup.replace_span(span, frag_nodes)
                return MergeResult(markup.serialize(doc), MergeStrategy.SECTION_TITLE)

        if _similar_size(base, fragment, self.size_tolerance):
            base_classes = markup.component_classes(doc)
            for cls in markup.component_classes(frag_doc):
                if cls not in base_classes:
                    continue
                span = markup.first_with_class(doc, cls)
                if span is not None:
                    markup.replace_span(span, frag_nodes)
                    return MergeResult(markup.serialize(doc), MergeStrategy.COMPONENT_CLASS)

        markup.append(doc, [markup.Text(fragment)], APPEND_SEPARATOR)
        return MergeResult(markup.serialize(doc), MergeStrategy.APPEND)


def merge_ui_documents(base: Optional[str], fragment: str, intent: MergeIntent = MergeIntent.ADD) -> str:
    return UIMergeEngine().merge(base, fragment, intent).document
