"""
Correction rule registry - vendor-and-pattern specific matchers.

A rule is registered for one (vendor, pattern) pair and declares the field
paths it may propose. The declaration doubles as the field -> pattern index
the learn stage uses to route feedback back to the right memory.

Matchers are pure: they read the invoice and the memory and yield zero or
more proposals (the line-item rule yields one per matching item). They never
compute their own confidence; every proposal carries the triggering
memory's id and confidence verbatim.
"""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..api.schemas import Invoice
from .errors import RuleRegistrationError, UnknownPatternError
from .schema import Memory, ProposedCorrection

Matcher = Callable[[Invoice, Memory], Iterable[ProposedCorrection]]

_INDEX = re.compile(r"\[\d+\]")
_DATE_TOKEN = re.compile(r"(\d{2})\.(\d{2})\.(\d{4})")


def field_key(field: str) -> str:
    """Collapse positional indexes: lineItems[2].sku -> lineItems[*].sku."""
    return _INDEX.sub("[*]", field)


def propose(memory: Memory, field: str, from_value, to_value) -> ProposedCorrection:
    return ProposedCorrection(
        field=field,
        from_value=from_value,
        to_value=to_value,
        source_memory_id=memory.id,
        confidence=memory.confidence
    )


@dataclass(frozen=True)
class Rule:
    vendor: str
    pattern: str
    fields: Tuple[str, ...]
    matcher: Matcher

    def apply(self, invoice: Invoice, memory: Memory) -> List[ProposedCorrection]:
        if invoice.vendor != self.vendor or memory.pattern != self.pattern:
            return []

        proposals = list(self.matcher(invoice, memory))
        declared = {field_key(f) for f in self.fields}
        for proposal in proposals:
            if field_key(proposal.field) not in declared:
                raise RuleRegistrationError(
                    f"Rule {self.pattern!r} for {self.vendor!r} proposed undeclared field {proposal.field!r}"
                )
        return proposals


class RuleRegistry:
    """(vendor, pattern) -> rule, plus a per-vendor field <-> pattern index."""

    def __init__(self):
        self._rules: Dict[Tuple[str, str], Rule] = {}
        self._field_patterns: Dict[Tuple[str, str], str] = {}

    def register(self, vendor: str, pattern: str, fields: Iterable[str]):
        """Decorator registering a matcher function."""
        def decorator(matcher: Matcher) -> Matcher:
            self.add(Rule(vendor=vendor, pattern=pattern, fields=tuple(fields), matcher=matcher))
            return matcher
        return decorator

    def add(self, rule: Rule) -> None:
        if not rule.fields:
            raise RuleRegistrationError(f"Rule {rule.pattern!r} for {rule.vendor!r} declares no fields")
        if (rule.vendor, rule.pattern) in self._rules:
            raise RuleRegistrationError(f"Pattern {rule.pattern!r} already registered for {rule.vendor!r}")

        keys = [(rule.vendor, field_key(f)) for f in rule.fields]
        for key in keys:
            if key in self._field_patterns:
                raise RuleRegistrationError(
                    f"Field {key[1]!r} of {rule.vendor!r} already claimed by {self._field_patterns[key]!r}"
                )

        self._rules[(rule.vendor, rule.pattern)] = rule
        for key in keys:
            self._field_patterns[key] = rule.pattern

    def rule_for(self, vendor: str, pattern: str) -> Optional[Rule]:
        return self._rules.get((vendor, pattern))

    def rules_for_vendor(self, vendor: str) -> List[Rule]:
        return [rule for (v, _), rule in self._rules.items() if v == vendor]

    def pattern_for_field(self, vendor: str, field: str) -> str:
        """Resolve the pattern that owns a (possibly indexed) field path."""
        try:
            return self._field_patterns[(vendor, field_key(field))]
        except KeyError:
            raise UnknownPatternError(vendor, field) from None

    def fields_for_pattern(self, vendor: str, pattern: str) -> Tuple[str, ...]:
        rule = self.rule_for(vendor, pattern)
        return rule.fields if rule else ()

    def match(self, invoice: Invoice, memory: Memory) -> List[ProposedCorrection]:
        """Run the rule registered for this memory's pattern, if any."""
        rule = self.rule_for(invoice.vendor, memory.pattern)
        if rule is None:
            return []
        return rule.apply(invoice, memory)

    def __len__(self):
        return len(self._rules)


# Helpers

def extract_date(text: str) -> Optional[str]:
    """First DD.MM.YYYY token re-emitted as YYYY-MM-DD."""
    match = _DATE_TOKEN.search(text or "")
    if not match:
        return None
    day, month, year = match.groups()
    return f"{year}-{month}-{day}"


def recompute_tax(invoice: Invoice) -> float:
    """Gross minus net, rounded half up to cents."""
    tax = Decimal(invoice.fields.gross_total - invoice.fields.net_total)
    return float(tax.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


# Built-in rules

default_registry = RuleRegistry()


@default_registry.register("Supplier GmbH", "Leistungsdatum -> serviceDate", fields=["serviceDate"])
def service_date_from_leistungsdatum(invoice: Invoice, memory: Memory):
    if not invoice.fields.service_date and "Leistungsdatum" in invoice.raw_text:
        service_date = extract_date(invoice.raw_text)
        if service_date:
            yield propose(memory, "serviceDate", invoice.fields.service_date, service_date)


VAT_INCLUSIVE_MARKERS = ("mwst. inkl", "prices incl", "inkl")


@default_registry.register("Parts AG", "VAT_INCLUSIVE_PRICING", fields=["taxTotal"])
def vat_inclusive_tax(invoice: Invoice, memory: Memory):
    text = invoice.raw_text.lower()
    if any(marker in text for marker in VAT_INCLUSIVE_MARKERS):
        yield propose(memory, "taxTotal", invoice.fields.tax_total, recompute_tax(invoice))


@default_registry.register("Parts AG", "CURRENCY_RECOVERY", fields=["currency"])
def currency_recovery(invoice: Invoice, memory: Memory):
    if not invoice.fields.currency:
        if "€" in invoice.raw_text or "eur" in invoice.raw_text.lower():
            yield propose(memory, "currency", invoice.fields.currency, "EUR")


@default_registry.register("Freight & Co", "SKONTO_TERMS", fields=["paymentTerms"])
def skonto_terms(invoice: Invoice, memory: Memory):
    if "skonto" in invoice.raw_text.lower():
        yield propose(memory, "paymentTerms", invoice.fields.payment_terms, "SKONTO_DETECTED")


FREIGHT_KEYWORDS = ("seefracht", "shipping", "freight")


@default_registry.register("Freight & Co", "FREIGHT_SKU_MAPPING", fields=["lineItems[*].sku"])
def freight_sku(invoice: Invoice, memory: Memory):
    for index, item in enumerate(invoice.fields.line_items):
        description = (item.description or "").lower()
        if not item.sku and any(keyword in description for keyword in FREIGHT_KEYWORDS):
            yield propose(memory, f"lineItems[{index}].sku", item.sku, "FREIGHT")
