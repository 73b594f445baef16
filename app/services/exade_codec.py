"""
Exade wire codec: SOAP envelope builder and tolerant response decoder.

Request:
    SOAP 1.1 envelope (4D web service) whose single string argument
    ``webservice_tarificateurRequest`` carries the proprietary XML document
    in a CDATA section: licence, code_courtier, type_operation, optional
    id_tarif, then a <simulation> block with one or two <assure>, the <pret>
    and one <garantie_pret> per insured person.

Response:
    Same envelope. The inner document is either wrapped in CDATA or
    HTML-entity-escaped (the provider sometimes double-encodes). It holds
    zero or more <tarif> blocks, an optional <id_simulation>, top-level
    <erreur> / <listeErreurs> entries and, for document operations,
    <fichier> blocks. SOAP faults come back as <faultstring>.

Units on the wire:
    - money: integer centimes
    - nominal rate: hundredths of a percent (3.5 % -> 350)
    - taux_capital_assure_tarif: ten-thousandths
    - dates: YYYYMMDD
"""

import html
import logging
from datetime import date
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import List, Optional, Tuple, Union
from xml.sax.saxutils import escape

from bs4 import BeautifulSoup

from app.services.errors import ExadeDecodeError, ValidationError
from app.services.exade_defaults import (
    defaulted_fields,
    resolve_effective_date,
    resolve_loan_codes,
    resolve_person_risks,
    resolve_sex,
)
from app.services.exade_types import (
    BrokerPricingConfig,
    DecodedResponse,
    Document,
    LoanClientProfile,
    PersonProfile,
    Tariff,
    WireMessage,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Constants
# ============================================================================

SOAP_ACTION = "A_WebService#webservice_tarificateur"
CONTENT_TYPE = "text/xml;charset=utf-8"

OPERATION_TARIFICATION = 2
PREMIUM_FREQUENCY_MONTHLY = 12
DEFAULT_DEDUCTIBLE_DAYS = 90
INSURED_STATUS_BORROWER = 1
AMORTIZATION_FREQUENCY_MONTHLY = 12

COUNTRY_OF_BIRTH_FRANCE = 118
NATIONALITY_FRANCE = 84
TAX_RESIDENCE_FRANCE = 84

# Tags whose presence proves we are looking at a tarificateur answer
RESPONSE_MARKERS = (
    "webservice_tarificateurresult",
    "webservice_tarificateurresponse",
    "tarif",
    "tarifs",
    "id_simulation",
    "erreur",
    "listeerreurs",
    "fichier",
    "faultstring",
)

ENVELOPE_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<soapenv:Envelope xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" xmlns:xsd="http://www.w3.org/2001/XMLSchema" xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" xmlns:def="http://www.4d.com/namespace/default">
  <soapenv:Header/>
  <soapenv:Body>
    <def:webservice_tarificateur soapenv:encodingStyle="http://schemas.xmlsoap.org/soap/encoding/">
      <webservice_tarificateurRequest xsi:type="xsd:string"><![CDATA[{inner}]]></webservice_tarificateurRequest>
    </def:webservice_tarificateur>
  </soapenv:Body>
</soapenv:Envelope>"""


# ============================================================================
# Encoding helpers
# ============================================================================

def format_date(value: date) -> str:
    return value.strftime("%Y%m%d")


def rate_to_wire(rate_pct: Decimal) -> int:
    """3.5 (%) -> 350."""
    return int((Decimal(rate_pct) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def yes_no(flag: bool) -> str:
    return "O" if flag else "N"


def _el(tag: str, value: Union[str, int, None]) -> str:
    if value is None:
        return f"<{tag}/>"
    return f"<{tag}>{escape(str(value))}</{tag}>"


def _assure_block(
    number: int,
    person: PersonProfile,
    membership_type: int,
    commission_code: Optional[str],
    broker_fee_minor: Optional[int],
) -> Tuple[str, List[str]]:
    risks = resolve_person_risks(person)
    sex = resolve_sex(person)
    prefix = f"assure{number}"
    defaulted = defaulted_fields(prefix, risks)
    if sex.defaulted:
        defaulted.append(f"{prefix}.sex")

    lines = [
        _el("numero", number),
        _el("statut", INSURED_STATUS_BORROWER),
        _el("type_adhesion", membership_type),
        _el("sexe", sex.value),
        _el("nom", person.last_name),
        _el("nom_naissance", person.birth_name or person.last_name),
        _el("prenom", person.first_name),
        _el("adresse", person.address or ""),
        _el("ville", person.city or ""),
        _el("code_postal", person.postal_code or ""),
        _el("lieu_naissance", person.birth_place or ""),
        _el("velIdPaysNaissance", COUNTRY_OF_BIRTH_FRANCE),
        _el("idnationalite", NATIONALITY_FRANCE),
        _el("idPaysResidenceFiscale", TAX_RESIDENCE_FRANCE),
        _el("date_naissance", format_date(person.birth_date)),
        _el("franchise", DEFAULT_DEDUCTIBLE_DAYS),
        _el("fumeur", yes_no(risks["smoker"].value)),
        _el("deplacement_pro", risks["business_travel"].value),
        _el("travaux_manuels", risks["manual_labour"].value),
        _el("travaux_hauteur", risks["work_at_height"].value),
        _el("manip_produit_dangereux", risks["dangerous_products"].value),
        _el("portable", person.phone or ""),
        _el("email", person.email or ""),
        _el("politique_expose", yes_no(risks["politically_exposed"].value)),
        _el("proche_politique_expose", yes_no(risks["close_to_politically_exposed"].value)),
        _el("encours_lemoine", risks["lemoine_outstanding"].value),
        _el("categ_pro", risks["profession_category"].value),
    ]
    # Commission settings only travel with the principal borrower
    if number == 1:
        if broker_fee_minor is not None:
            lines.append(_el("frais_adhesion_apporteur", broker_fee_minor))
        if commission_code:
            lines.append(_el("commissionnement", commission_code))

    body = "\n    ".join(lines)
    return f"  <assure>\n    {body}\n  </assure>", defaulted


def encode_request(
    profile: LoanClientProfile,
    config: BrokerPricingConfig,
    commission_code: Optional[str] = None,
    broker_fee_minor: Optional[int] = None,
    target_tariff_id: Optional[str] = None,
    document_operation: Optional[int] = None,
    today: Optional[date] = None,
) -> WireMessage:
    """
    Build the SOAP request for one tarification call.

    Args:
        profile: Loan + insured persons
        config: Broker credentials (licence, code_courtier)
        commission_code: Exade commissionnement code (e.g. "2T2")
        broker_fee_minor: frais_adhesion_apporteur in centimes
        target_tariff_id: restrict the computation to one tariff (id_tarif)
        document_operation: type_operation_document, asks for PDF documents
        today: reference date for the default effective date

    Returns:
        WireMessage with the full envelope, the inner document and the list of
        fields that fell back to a default value.
    """
    if not config.licence_key:
        raise ValidationError("Licence Exade manquante")
    if not config.partner_code:
        raise ValidationError("Code courtier Exade manquant")
    for person in profile.persons:
        if not person.last_name.strip() or not person.first_name.strip():
            raise ValidationError("Nom et prénom de l'assuré obligatoires")
    if broker_fee_minor is not None and broker_fee_minor < 0:
        raise ValidationError("Frais de courtage négatifs")

    loan = profile.loan
    codes = resolve_loan_codes(loan)
    effective = resolve_effective_date(loan, today)
    defaulted = defaulted_fields("pret", codes)
    if effective.defaulted:
        defaulted.append("pret.effective_date")

    assures = []
    for number, person in enumerate(profile.persons, start=1):
        block, person_defaults = _assure_block(
            number,
            person,
            codes["membership_type"].value,
            commission_code,
            broker_fee_minor,
        )
        assures.append(block)
        defaulted.extend(person_defaults)

    release_date = loan.release_date or effective.value
    pret = "\n    ".join([
        _el("numero", 1),
        _el("type_pret", codes["loan_type"].value),
        _el("capital", loan.capital_minor),
        _el("taux", rate_to_wire(loan.rate_pct)),
        _el("type_taux", codes["rate_type"].value),
        _el("duree", loan.duration_months),
        _el("differe", codes["deferral_months"].value),
        _el("amortissement", AMORTIZATION_FREQUENCY_MONTHLY),
        _el("date_deblocage", format_date(release_date)),
        _el("palier", None),
    ])

    garanties = []
    for number in range(1, len(profile.persons) + 1):
        garanties.append(
            "  <garantie_pret>\n    "
            + "\n    ".join([
                _el("id_assure", number),
                _el("id_pret", 1),
                _el("garantie", codes["guarantee"].value),
                _el("quotite", codes["coverage_quota_pct"].value),
            ])
            + "\n  </garantie_pret>"
        )

    header = [
        _el("licence", config.licence_key),
        _el("code_courtier", config.partner_code),
        _el("type_operation", OPERATION_TARIFICATION),
    ]
    if document_operation is not None:
        header.append(_el("type_operation_document", document_operation))
    if target_tariff_id:
        header.append(_el("id_tarif", target_tariff_id))
    header.append("<retournerLesErreurs/>")

    simulation = "\n".join([
        "<simulation>",
        "  " + _el("date_effet", format_date(effective.value)),
        "  " + _el("id_objetdufinancement", codes["financing_purpose"].value),
        "  " + _el("frac_assurance", PREMIUM_FREQUENCY_MONTHLY),
        "  " + _el("type_credit", codes["credit_type"].value),
        *assures,
        f"  <pret>\n    {pret}\n  </pret>",
        *garanties,
        "</simulation>",
    ])
    inner = "\n".join(header) + "\n" + simulation

    if defaulted:
        logger.warning("Exade request: default values applied for %s", ", ".join(defaulted))

    return WireMessage(
        body=ENVELOPE_TEMPLATE.format(inner=inner),
        inner_xml=inner,
        soap_action=SOAP_ACTION,
        content_type=CONTENT_TYPE,
        defaults_applied=tuple(defaulted),
    )


# ============================================================================
# Decoding helpers
# ============================================================================

def _unwrap(raw: str) -> Tuple[str, bool]:
    """Return the inner payload and whether a CDATA section was found."""
    start = raw.find("<![CDATA[")
    if start != -1:
        end = raw.find("]]>", start)
        if end != -1:
            return raw[start + len("<![CDATA["):end], True
    if "&lt;" in raw:
        return html.unescape(raw), False
    return raw, False


def _text(block, name: str) -> Optional[str]:
    tag = block.find(name)
    if tag is None:
        return None
    value = tag.get_text(strip=True)
    return value or None


def _amount(block, name: str) -> Optional[int]:
    value = _text(block, name)
    if value is None:
        return None
    try:
        amount = Decimal(value.replace(",", "."))
        if not amount.is_finite():
            raise InvalidOperation(value)
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    except (InvalidOperation, ValueError):
        logger.warning("Exade response: non numeric <%s> value %r", name, value)
        return None


def _flag(block, name: str) -> Optional[bool]:
    value = _text(block, name)
    if value is None:
        return None
    value = value.lower()
    if value in ("o", "oui", "1", "true", "y"):
        return True
    if value in ("n", "non", "0", "false"):
        return False
    return None


def monthly_installment(total_minor: int, duration_months: Optional[int]) -> Optional[int]:
    if not duration_months:
        return None
    monthly = Decimal(total_minor) / Decimal(duration_months)
    return int(monthly.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _parse_tariff(block, duration_months: Optional[int]) -> Tariff:
    tariff_id = _text(block, "id_tarif") or ""
    total = _amount(block, "cout_total_tarif") or 0

    errors = []
    for liste in block.find_all("listeerreurs"):
        errors.extend(lib.get_text(strip=True) for lib in liste.find_all("libelle"))
    errors.extend(
        e.get_text(strip=True) for e in block.find_all("erreur")
        if e.find_parent("listeerreurs") is None
    )

    capital_rate = _amount(block, "taux_capital_assure_tarif")
    formalities = tuple(
        f.get_text(strip=True) for f in block.find_all("formalite") if f.get_text(strip=True)
    )

    return Tariff(
        tariff_id=tariff_id,
        insurer=_text(block, "compagnie") or "",
        product=_text(block, "nom") or "",
        total_cost_minor=total,
        monthly_minor=monthly_installment(total, duration_months),
        first_years_cost_minor=_amount(block, "cout_premieres_annees_tarif"),
        membership_fee_minor=_amount(block, "frais_adhesion") or 0,
        apporteur_fee_minor=_amount(block, "frais_adhesion_apporteur") or 0,
        capital_rate=Decimal(capital_rate) / Decimal(10000) if capital_rate else None,
        medical_formalities=formalities,
        lemoine_compatible=_flag(block, "compatible_lemoine"),
        errors=tuple(e for e in errors if e),
    )


def _parse_document(block) -> Document:
    size = _amount(block, "taille")
    return Document(
        label=_text(block, "libelle") or "",
        identifier=_text(block, "identifiant") or "",
        name=_text(block, "nom") or "",
        mime_type=_text(block, "type") or "",
        size=size,
        encoding=_text(block, "encodage") or "",
        compression=_text(block, "compression") or "",
        comment=_text(block, "commentaire") or "",
        data=_text(block, "data") or "",
    )


def decode_response(
    raw: Union[str, bytes],
    duration_months: Optional[int] = None,
) -> DecodedResponse:
    """
    Decode a tarificateur answer.

    Tariffs are deduplicated by id (first occurrence wins) and blocks without
    an id are dropped. A response without any tariff is a valid empty result;
    only a body with no recognizable Exade structure raises ExadeDecodeError.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw or not raw.strip():
        raise ExadeDecodeError("Réponse Exade vide")

    inner, had_cdata = _unwrap(raw)
    soup = BeautifulSoup(inner, "html.parser")
    envelope = soup if not had_cdata else BeautifulSoup(raw, "html.parser")

    scanned = (soup, envelope) if had_cdata else (soup,)
    if not any(doc.find(marker) for doc in scanned for marker in RESPONSE_MARKERS):
        raise ExadeDecodeError(f"Réponse Exade non reconnue: {raw[:200]!r}")

    faults = []
    for tag in [*envelope.find_all("faultstring"), *(soup.find_all("faultstring") if had_cdata else [])]:
        text = tag.get_text(strip=True)
        if text and text not in faults:
            faults.append(text)

    tariffs: List[Tariff] = []
    seen = set()
    dropped = 0
    for block in soup.find_all("tarif"):
        tariff = _parse_tariff(block, duration_months)
        if not tariff.tariff_id:
            dropped += 1
            continue
        if tariff.tariff_id in seen:
            continue
        seen.add(tariff.tariff_id)
        tariffs.append(tariff)
    if dropped:
        logger.info("Exade response: %s tariff block(s) without id_tarif dropped", dropped)

    errors = []
    for tag in soup.find_all("erreur"):
        if tag.find_parent("tarif") is None and tag.find_parent("listeerreurs") is None:
            errors.append(tag.get_text(strip=True))
    for liste in soup.find_all("listeerreurs"):
        if liste.find_parent("tarif") is None:
            errors.extend(lib.get_text(strip=True) for lib in liste.find_all("libelle"))

    documents = tuple(_parse_document(block) for block in soup.find_all("fichier"))

    return DecodedResponse(
        tariffs=tuple(tariffs),
        simulation_id=_text(soup, "id_simulation"),
        documents=documents,
        errors=tuple(e for e in errors if e),
        faults=tuple(faults),
    )
