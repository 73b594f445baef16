"""
Exade label normalizer.

Maps free-text labels (typed by a broker or extracted from loan paperwork)
to the numeric codes expected by the Exade tarificateur:
- categ_pro (1-11)
- type_pret (1-10)
- id_objetdufinancement (1-8)
- type_adhesion (0, 3, 4)
- type_credit (0 immobilier, 1 non immobilier)
- civilité (M, Mme, Mlle)

Unrecognized labels return None so that default resolution stays explicit
(see exade_defaults.py).
"""

import logging
import re
import unicodedata
from typing import Dict, Optional, Union

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.6


# ============================================================================
# Helpers
# ============================================================================

def normalize_label(value: Optional[str]) -> str:
    """Lowercase, strip accents and punctuation, collapse whitespace."""
    if not value:
        return ""
    text = unicodedata.normalize("NFD", value.lower())
    text = "".join(c for c in text if not unicodedata.combining(c))
    text = re.sub(r"[^a-z0-9]", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def similarity(a: str, b: str) -> float:
    """Crude similarity score in [0, 1]: equality, inclusion, then shared words."""
    s1, s2 = normalize_label(a), normalize_label(b)
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    if s1 in s2 or s2 in s1:
        return 0.9
    words1, words2 = s1.split(" "), s2.split(" ")
    common = [w for w in words1 if w in words2]
    return (2 * len(common)) / (len(words1) + len(words2))


def _lookup(
    label: Union[str, int, None],
    mappings: Dict[str, int],
    valid_codes: range,
    kind: str,
) -> Optional[int]:
    if label is None or label == "":
        return None

    # Already a code
    try:
        code = int(str(label).strip())
        if code in valid_codes:
            return code
    except ValueError:
        pass

    normalized = normalize_label(str(label))
    if normalized in mappings:
        return mappings[normalized]

    best_code, best_score = None, 0.0
    for key, code in mappings.items():
        score = similarity(normalized, key)
        if score > SIMILARITY_THRESHOLD and score > best_score:
            best_code, best_score = code, score

    if best_code is not None:
        logger.info("%s '%s' -> code %s (score %.2f)", kind, label, best_code, best_score)
        return best_code

    logger.warning("%s non reconnu: '%s'", kind, label)
    return None


# ============================================================================
# Catégorie professionnelle (categ_pro)
# ============================================================================

CATEGORY_MAPPINGS: Dict[str, int] = {
    "salarie cadre": 1, "cadre": 1, "cadre superieur": 1, "cadre dirigeant": 1,
    "ingenieur": 1, "manager": 1, "directeur": 1,
    "salarie non cadre": 2, "salarie": 2, "employe": 2, "ouvrier": 2,
    "technicien": 2, "agent": 2, "vendeur": 2, "assistant": 2, "secretaire": 2,
    "profession liberale": 3, "liberal": 3, "avocat": 3, "notaire": 3,
    "expert comptable": 3, "architecte": 3, "consultant": 3,
    "chirurgien": 4,
    "chirurgien dentiste": 5, "dentiste": 5,
    "medecin specialiste": 6, "medecin": 6, "docteur": 6, "cardiologue": 6,
    "radiologue": 6, "psychiatre": 6,
    "veterinaire": 7,
    "artisan": 8, "plombier": 8, "electricien": 8, "menuisier": 8,
    "boulanger": 8, "coiffeur": 8,
    "commercant": 9, "gerant": 9, "chef d entreprise": 9, "entrepreneur": 9,
    "auto entrepreneur": 9,
    "retraite": 10, "pre retraite": 10,
    "sans activite professionnelle": 11, "sans activite": 11, "chomeur": 11,
    "demandeur d emploi": 11, "etudiant": 11, "au foyer": 11,
}


def normalize_profession_category(label: Union[str, int, None]) -> Optional[int]:
    return _lookup(label, CATEGORY_MAPPINGS, range(1, 12), "Catégorie")


# ============================================================================
# Type de prêt (type_pret)
# ============================================================================

LOAN_TYPE_MAPPINGS: Dict[str, int] = {
    "amortissable": 1, "pret amortissable": 1, "credit amortissable": 1,
    "pret immobilier": 1, "immobilier": 1, "pret habitat": 1,
    "in fine": 2, "pret in fine": 2,
    "relais": 3, "pret relais": 3, "credit relais": 3,
    "credit bail": 4, "leasing": 4,
    "loa": 5, "location avec option d achat": 5,
    "taux 0": 6, "ptz": 6, "pret taux zero": 6, "pret a taux zero": 6,
    "palier": 7, "pret a paliers": 7,
    "pret d honneur": 8, "pret honneur": 8,
    "restructuration": 9, "rachat de credit": 9, "regroupement de credits": 9,
    "amortissable professionnel": 10, "pret professionnel": 10,
}


def normalize_loan_type(label: Union[str, int, None]) -> Optional[int]:
    return _lookup(label, LOAN_TYPE_MAPPINGS, range(1, 11), "Type prêt")


# ============================================================================
# Objet du financement (id_objetdufinancement)
# ============================================================================

FINANCING_PURPOSE_MAPPINGS: Dict[str, int] = {
    "residence principale": 1, "achat residence principale": 1, "rp": 1,
    "residence secondaire": 2, "achat residence secondaire": 2, "rs": 2,
    "travaux": 3, "pret travaux": 3, "renovation": 3,
    "investissement locatif": 4, "locatif": 4, "achat locatif": 4,
    "professionnel": 5, "pret professionnel": 5, "entreprise": 5,
    "divers": 6, "objet divers": 6, "consommation": 6, "pret personnel": 6,
    "construction": 7, "construction maison": 7, "vefa": 7,
    "restructuration": 8, "rachat de credit": 8, "regroupement": 8,
}


def normalize_financing_purpose(label: Union[str, int, None]) -> Optional[int]:
    return _lookup(label, FINANCING_PURPOSE_MAPPINGS, range(1, 9), "Objet financement")


# ============================================================================
# Type d'adhésion / type de crédit / civilité
# ============================================================================

def normalize_membership_type(label: Union[str, int, None]) -> Optional[int]:
    """0: nouveau prêt, 3: résiliation banque, 4: résiliation délégation."""
    if label is None or label == "":
        return None
    try:
        code = int(str(label).strip())
        if code in (0, 3, 4):
            return code
    except ValueError:
        pass

    normalized = normalize_label(str(label))
    if "resiliation banque" in normalized or "substitution banque" in normalized:
        return 3
    if "delegation" in normalized or "substitution" in normalized:
        return 4
    if "nouveau" in normalized:
        return 0
    return None


NON_REAL_ESTATE_KEYWORDS = (
    "consommation", "personnel", "auto", "voiture", "moto", "equipement", "voyage",
)


def normalize_credit_type(label: Union[str, int, None]) -> Optional[int]:
    if label is None or label == "":
        return None
    try:
        code = int(str(label).strip())
        if code in (0, 1):
            return code
    except ValueError:
        pass

    normalized = normalize_label(str(label))
    if any(keyword in normalized for keyword in NON_REAL_ESTATE_KEYWORDS):
        return 1
    return 0


def normalize_civility(label: Optional[str]) -> str:
    normalized = normalize_label(label)
    if "mademoiselle" in normalized or normalized == "mlle":
        return "Mlle"
    if "madame" in normalized or normalized == "mme":
        return "Mme"
    return "M"
