"""
Charge description generator

Builds the human-readable text sent to the payment gateway for a charge.
Pure functions only: the same consultations and patient always produce the
same text, which keeps charge creation and charge editing consistent.

Example (one professional, two sessions):

    2 sessões de fisioterapia respiratória, realizadas pela fisioterapeuta
    Ana Souza, CPF 123.456.789-09, registro CREFITO-8 1234-F, nos dias
    03/02/2025 (R$ 100,00) e 05/02/2025 (R$ 100,00).
    Atendimentos realizados ao paciente Maria Silva, CPF 987.654.321-00.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from ...config import DEFAULT_PROFESSIONAL_LABEL
from ...shared.validators import only_digits

# Singular -> plural, first matching rule wins
PLURAL_RULES = (
    ("sessão", "sessões"),
    ("consulta", "consultas"),
    ("avaliação", "avaliações"),
)

MISSING_TAX_ID = "Não Informado"


@dataclass(frozen=True)
class ConsultationLine:
    """The slice of a consultation the description needs"""

    id: Union[int, str]
    scheduled_at: datetime
    service_name: str
    service_value: Union[Decimal, float, int]
    professional_name: str
    professional_id: Optional[Union[int, str]] = None
    professional_tax_id: Optional[str] = None
    professional_license: Optional[str] = None
    professional_label: Optional[str] = None
    professional_gender: Optional[str] = None
    # Canonical label from the service type, e.g. "sessão de fisioterapia"
    service_label: Optional[str] = None


@dataclass(frozen=True)
class PatientIdentity:
    name: str
    tax_id: Optional[str] = None


@dataclass
class ConsultationChargeGroup:
    """Consultations of one professional, sub-grouped by service type"""

    professional_key: Union[int, str]
    consultations: list[ConsultationLine] = field(default_factory=list)
    services: dict[str, list[ConsultationLine]] = field(default_factory=dict)

    @property
    def lead(self) -> ConsultationLine:
        return self.consultations[0]

    @property
    def count(self) -> int:
        return len(self.consultations)


def _match_case(original: str, replacement: str) -> str:
    if original.isupper():
        return replacement.upper()
    if original[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def pluralize_label(label: str) -> str:
    """Pluralize a known service noun inside the label (case-insensitive)"""
    for singular, plural in PLURAL_RULES:
        pattern = re.compile(rf"(?<!\w){singular}(?!\w)", re.IGNORECASE)
        if pattern.search(label):
            return pattern.sub(lambda m, p=plural: _match_case(m.group(0), p), label)
    return label


def service_label_for(line: ConsultationLine) -> str:
    return line.service_label or (line.service_name or "atendimento").lower()


def format_brl(value: Union[Decimal, float, int, None]) -> str:
    """R$ 1234,50 - two decimals, comma separator, no grouping"""
    amount = Decimal(str(value or 0)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return f"R$ {amount:.2f}".replace(".", ",")


def format_tax_id(tax_id: Optional[str]) -> str:
    """Render 'CPF 000.000.000-00' / 'CNPJ 00.000.000/0000-00', raw value otherwise"""
    if not tax_id:
        return f"CPF {MISSING_TAX_ID}"

    digits = only_digits(tax_id)
    if len(digits) == 11:
        return f"CPF {digits[:3]}.{digits[3:6]}.{digits[6:9]}-{digits[9:]}"
    if len(digits) == 14:
        return f"CNPJ {digits[:2]}.{digits[2:5]}.{digits[5:8]}/{digits[8:12]}-{digits[12:]}"
    return f"CPF {tax_id}"


def join_with_and(items: list[str]) -> str:
    """a, b e c"""
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    return ", ".join(items[:-1]) + " e " + items[-1]


def _chronological(consultations: list[ConsultationLine]) -> list[ConsultationLine]:
    return sorted(consultations, key=lambda c: (c.scheduled_at, str(c.id)))


def group_consultations(consultations: list[ConsultationLine]) -> list[ConsultationChargeGroup]:
    """Group by professional, then by service type, in order of first appearance"""
    groups: dict[Union[int, str], ConsultationChargeGroup] = {}

    for line in _chronological(consultations):
        key = line.professional_id if line.professional_id is not None else line.professional_name
        group = groups.get(key)
        if group is None:
            group = groups[key] = ConsultationChargeGroup(professional_key=key)
        group.consultations.append(line)
        group.services.setdefault(service_label_for(line), []).append(line)

    return list(groups.values())


def describe_services(group: ConsultationChargeGroup) -> str:
    phrases = []
    for label, lines in group.services.items():
        count = len(lines)
        phrases.append(f"1 {label}" if count == 1 else f"{count} {pluralize_label(label)}")
    return ", ".join(phrases)


def describe_dates(group: ConsultationChargeGroup) -> str:
    entries = [
        f"{line.scheduled_at.strftime('%d/%m/%Y')} ({format_brl(line.service_value)})"
        for line in group.consultations
    ]
    return join_with_and(entries)


def describe_professional(
    group: ConsultationChargeGroup, default_label: str = DEFAULT_PROFESSIONAL_LABEL
) -> str:
    lead = group.lead
    singular = group.count == 1

    verb = "realizada" if singular else "realizadas"
    article = "pelo" if (lead.professional_gender or "").upper() == "M" else "pela"
    label = lead.professional_label or default_label

    sentence = f"{describe_services(group)}, {verb} {article} {label} {lead.professional_name}"
    if lead.professional_tax_id:
        sentence += f", {format_tax_id(lead.professional_tax_id)}"
    if lead.professional_license:
        sentence += f", registro {lead.professional_license}"

    days = "no dia" if singular else "nos dias"
    return f"{sentence}, {days} {describe_dates(group)}."


def describe_patient(patient: PatientIdentity, total: int) -> str:
    prefix = "Atendimento realizado" if total == 1 else "Atendimentos realizados"
    name = (patient.name if patient else None) or "Paciente"
    tax_id = patient.tax_id if patient else None
    return f"{prefix} ao paciente {name}, {format_tax_id(tax_id)}."


def generate_charge_description(
    consultations: list[ConsultationLine],
    patient: PatientIdentity,
    default_professional_label: str = DEFAULT_PROFESSIONAL_LABEL,
) -> str:
    """
    One sentence per professional, one line each, followed by a closing line
    naming the patient. Callers must not pass an empty list.
    """
    lines = [
        describe_professional(group, default_professional_label)
        for group in group_consultations(consultations)
    ]
    lines.append(describe_patient(patient, len(consultations)))
    return "\n".join(lines)
