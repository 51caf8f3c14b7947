"""
Response classifier

Classifies intercepted slot-search responses. Runs synchronously inside the
network hook, so it only does plain string scanning.
"""
import logging
import re
from datetime import date, datetime
from typing import List, Optional

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel

from ..common.models import Classification

logger = logging.getLogger(__name__)

_EDET_RE = re.compile(r"edet=(\d+)")
_SITEKEY_ATTR = 'data-sitekey="'


class ResponseMarkers(BaseModel):
    """Literal texts the classifier looks for"""
    day_slots: str = "searchForDaySlots"
    claim_action: str = "_eventId=reserveSlot"
    rate_limit: str = "Pardon Our Interruption"
    access_control: str = "_Incapsula_Resource"
    period_anchor: str = "Number of available tests between"
    period_end: str = "&ndash;"
    fatal_error_code: int = 15
    captcha_error_code: int = 12


class MarkerExtractor:
    """
    Positional extraction of links and dates around marker texts.

    Anchors:
      link   - the ``href="`` attribute enclosing the marker; if the marker is
               not inside an attribute value, the next ``href="`` after it
      period - text between the period anchor and ``&ndash;``, shaped like
               ``5 <b>March</b> 2026``
    """

    HREF = 'href="'

    def link_at(self, text: str, marker_pos: int) -> Optional[str]:
        """Extract the link belonging to the marker at ``marker_pos``"""
        href_pos = text.rfind(self.HREF, 0, marker_pos)
        if href_pos != -1:
            value_start = href_pos + len(self.HREF)
            # A quote in between means the marker sits outside that attribute
            if '"' not in text[value_start:marker_pos]:
                value_end = text.find('"', marker_pos)
                if value_end == -1:
                    return None
                return self._decode(text[value_start:value_end])

        href_pos = text.find(self.HREF, marker_pos)
        if href_pos == -1:
            return None
        value_start = href_pos + len(self.HREF)
        value_end = text.find('"', value_start)
        if value_end == -1:
            return None
        return self._decode(text[value_start:value_end])

    def last_link(self, text: str, marker: str) -> Optional[str]:
        pos = text.rfind(marker)
        if pos == -1:
            return None
        return self.link_at(text, pos)

    def all_links(self, text: str, marker: str) -> List[str]:
        """Every link carrying ``marker``, in document order"""
        links = []
        pos = text.find(marker)
        while pos != -1:
            link = self.link_at(text, pos)
            if link:
                links.append(link)
            pos = text.find(marker, pos + 1)
        return links

    def period_start(self, text: str, anchor: str, end_marker: str) -> Optional[date]:
        anchor_pos = text.find(anchor)
        if anchor_pos == -1:
            return None
        start = anchor_pos + len(anchor)
        end = text.find(end_marker, start)
        if end == -1:
            return None

        date_text = text[start:end].strip()
        if len(date_text) < 6:
            return None

        year = date_text[-4:]
        day_len = 0
        while day_len < len(date_text) and date_text[day_len].isdigit():
            day_len += 1
        day = date_text[:day_len]

        first_gt = date_text.find(">")
        last_lt = date_text.rfind("<")
        if not day or not year.isdigit() or first_gt == -1 or last_lt <= first_gt:
            return None
        month = date_text[first_gt + 1:last_lt].strip()

        for fmt in ("%d %B %Y", "%d %b %Y"):
            try:
                return datetime.strptime(f"{day} {month} {year}", fmt).date()
            except ValueError:
                continue
        return None

    def sitekey(self, text: str) -> Optional[str]:
        pos = text.find(_SITEKEY_ATTR)
        if pos == -1:
            return None
        start = pos + len(_SITEKEY_ATTR)
        end = text.find('"', start)
        return text[start:end] if end != -1 else None

    @staticmethod
    def _decode(link: str) -> str:
        return link.replace("&amp;", "&")


class ResponseClassifier:
    """
    Maps one response body to exactly one Classification.

    Priority: slot found, rate limited, access-control error, no slot. A slot
    marker wins even when other markers are present too.
    """

    def __init__(
        self,
        markers: Optional[ResponseMarkers] = None,
        extractor: Optional[MarkerExtractor] = None,
        today=None,
    ):
        self.markers = markers or ResponseMarkers()
        self.extractor = extractor or MarkerExtractor()
        self._today = today or date.today

    def effective_deadline(self, deadline: Optional[date]) -> date:
        return deadline or (self._today() + relativedelta(months=3))

    def classify(self, body: str, deadline: Optional[date] = None) -> Classification:
        m = self.markers

        if m.day_slots in body:
            link = self.extractor.last_link(body, m.day_slots)
            if link:
                period_start = self.extractor.period_start(body, m.period_anchor, m.period_end)
                limit = self.effective_deadline(deadline)
                if period_start is not None and period_start > limit:
                    logger.debug(f"Slot period {period_start} after deadline {limit}, ignoring")
                    return Classification.no_slot()
                return Classification.slot_found(link, period_start)
            logger.warning("Slot marker found but no link could be extracted")
            return Classification.no_slot()

        if m.rate_limit in body:
            return Classification.rate_limited()

        if m.access_control in body:
            match = _EDET_RE.search(body)
            code = int(match.group(1)) if match else None
            if code == m.fatal_error_code:
                return Classification.fatal_error(code)
            return Classification.captcha(sitekey=self.extractor.sitekey(body), error_code=code)

        return Classification.no_slot()
