"""
Rental agreement selection and rendering.

The agreement type follows from the listing's category and subcategory:
boats get a bareboat charter, motorised land/snow/water craft get a
powersports liability waiver, everything else a standard rental agreement.
Rendering is pure HTML generation from the booking inputs.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from markupsafe import escape

from p2p_rental.constants import ListingCategory
from p2p_rental.errors import ContractUnavailableError
from p2p_rental.services.pricing import is_jet_ski, money

logger = logging.getLogger(__name__)

PLATFORM_NAME = "P2P Rental"
DEPOSIT_REFUND_HOURS = 48


class ContractType(Enum):
    BAREBOAT = "Bareboat Charter Agreement"
    POWERSPORTS_WAIVER = "Risk Warning, Waiver & Release of Liability"
    STANDARD_RENTAL = "Standard Equipment Rental Agreement"


@dataclass(frozen=True)
class ContractDocument:
    contract_type: ContractType
    title: str
    html: str
    reference: str
    external_url: Optional[str] = None

    @property
    def is_external(self) -> bool:
        return self.external_url is not None


def select_contract_type(category: str, subcategory: Optional[str] = None) -> ContractType:
    """First match wins: boats, then powersports, then standard"""
    if category == ListingCategory.BOATS:
        return ContractType.BAREBOAT
    if category in (ListingCategory.ATVS_UTVS, ListingCategory.MOTORCYCLES, ListingCategory.WINTER_SPORTS) \
            or is_jet_ski(category, subcategory):
        return ContractType.POWERSPORTS_WAIVER
    return ContractType.STANDARD_RENTAL


def _fmt_datetime(value: datetime) -> str:
    return value.strftime('%b %d, %Y %I:%M %p')


def _fmt_money(value) -> str:
    return f"${money(value or 0):,.2f}"


def _document_reference(listing, generated_on: datetime) -> str:
    sub = (listing.subcategory or 'GEN')[:3].upper()
    return f"DOC-{listing.listing_id}-{sub}-{generated_on.strftime('%Y%m%d%H%M%S')}"


def _section(heading: str, *paragraphs: str) -> str:
    body = "".join(f"<p>{p}</p>" for p in paragraphs)
    return f"<section><h3>{heading}</h3>{body}</section>"


def _parties(listing, renter, start_date, end_date, item_label: str) -> str:
    return (
        '<table class="contract-parties">'
        f"<tr><th>Owner / Lessor</th><td>{escape(listing.owner.name)}</td></tr>"
        f"<tr><th>Renter / Lessee</th><td>{escape(renter.name)}</td></tr>"
        f"<tr><th>{item_label}</th><td>{escape(_item_name(listing))}</td></tr>"
        f"<tr><th>Rental Period</th><td>{_fmt_datetime(start_date)} - {_fmt_datetime(end_date)}</td></tr>"
        "</table>"
    )


def _item_name(listing) -> str:
    return (listing.legal_item_name or listing.title).upper()


def _liability_waiver(listing) -> str:
    vehicle = escape(listing.subcategory or listing.category)
    clauses = [
        _section(
            "I. EXPRESS ASSUMPTION OF RISK",
            f"The Renter acknowledges that operating a <strong>{vehicle}</strong> is an inherently dangerous "
            "activity. Risks include collisions, overturning, ejection, drowning, severe bodily injury, "
            "paralysis or death. The Renter voluntarily assumes all such risks, known and unknown, even if "
            "arising from the negligence of others.",
        ),
        _section(
            "II. MANDATORY SAFETY GEAR AND ENGINE CUT-OFF",
            "The Renter certifies they received a safety briefing from the Owner, will wear approved "
            "protective equipment at all times and will keep the engine cut-off lanyard attached while "
            "operating the equipment.",
        ),
        _section(
            "III. UNQUALIFIED RELEASE",
            f"The Renter releases and discharges the Owner and {PLATFORM_NAME} from all claims for death, "
            "personal injury or property damage arising from use of the equipment.",
        ),
        _section(
            "IV. ALCOHOL AND DRUGS",
            "Operating the equipment under the influence of alcohol or drugs is a material breach. The "
            "Owner may end the rental immediately without refund and retain the full security deposit.",
        ),
    ]
    if is_jet_ski(listing.category, listing.subcategory):
        clauses.append(_section(
            "PERSONAL WATERCRAFT RISK WARNING",
            "Personal watercraft have no brake and steering requires throttle. The Renter will keep the "
            "craft in at least 3 feet of water; impeller damage from ingested sand or rocks is the "
            "Renter's sole responsibility.",
        ))
    return "".join(clauses)


def _standard_terms(listing) -> str:
    return (
        _section(
            "1. CONDITION OF EQUIPMENT",
            "The Renter acknowledges receiving the equipment in good working order and agrees to return it "
            "in the same condition, ordinary wear and tear excepted.",
        )
        + _section(
            "2. RESPONSIBILITY FOR LOSS",
            "The Renter is responsible for the full replacement cost of the equipment if lost or stolen "
            "during the rental period.",
        )
        + _section(
            "3. USE OF PROPERTY",
            f"The {escape(listing.subcategory or 'item')} shall be used solely for its intended recreational "
            "purpose. Commercial use or sub-leasing is prohibited.",
        )
    )


def _common_terms(listing, total_price) -> str:
    return _section(
        "ADDITIONAL TERMS",
        f"<strong>RENTAL FEE:</strong> {_fmt_money(total_price)}.",
        f"<strong>SECURITY DEPOSIT:</strong> A security deposit of {_fmt_money(listing.security_deposit)} "
        f"is held to cover potential damage.",
        f"<strong>INDEMNIFICATION:</strong> The Renter agrees to indemnify and hold harmless the Owner and "
        f"{PLATFORM_NAME} from any claims arising out of the use of the rented item.",
    )


def _bareboat_charter(listing, renter, start_date, end_date, total_price) -> str:
    owner = escape(listing.owner.name.upper())
    vessel = escape(f"{listing.title} ({listing.subcategory or 'Vessel'})".upper())
    if listing.city and listing.state:
        area = escape(f"{listing.city}, {listing.state} and surrounding coastal waters")
    else:
        area = "As agreed between the parties"

    insurance_disclaimer = ""
    if not listing.has_commercial_insurance:
        insurance_disclaimer = (
            '<p class="insurance-disclaimer"><strong>IMPORTANT DISCLAIMER:</strong> RENTER ACKNOWLEDGES '
            "THAT THE VESSEL MAY NOT CARRY COMMERCIAL HULL INSURANCE. RENTER ASSUMES FULL FINANCIAL "
            "RESPONSIBILITY FOR ALL DAMAGE TO THE VESSEL.</p>"
        )

    particulars = (
        '<table class="contract-parties">'
        f"<tr><th>Owner</th><td>{owner}</td></tr>"
        f"<tr><th>Renter</th><td>{escape(renter.name)}</td></tr>"
        f"<tr><th>Vessel</th><td>{vessel}</td></tr>"
        f"<tr><th>Rental Period</th><td>From {_fmt_datetime(start_date)} to {_fmt_datetime(end_date)}</td></tr>"
        f"<tr><th>Cruising Area</th><td>{area}</td></tr>"
        f"<tr><th>Rental Fee</th><td>{_fmt_money(total_price)}</td></tr>"
        f"<tr><th>Security Deposit</th><td>{_fmt_money(listing.security_deposit)}</td></tr>"
        "</table>"
    )

    clauses = [
        _section(
            "1. AGREEMENT TO LET AND HIRE",
            "The OWNER agrees to rent the Vessel to the RENTER and not to enter into any other agreement "
            "for the same period. The RENTER agrees to hire the Vessel and pay the Rental Fee, the Security "
            "Deposit and any other agreed charges.",
        ),
        _section(
            "2. DELIVERY AND RE-DELIVERY",
            "The OWNER shall deliver the Vessel seaworthy, clean and with all required safety equipment. "
            "The RENTER shall re-deliver the Vessel free of debts incurred by the RENTER and in as good a "
            "condition as when delivery was taken, fair wear and tear excepted.",
        ),
        _section(
            "3. DEMISE CLAUSE",
            "This Agreement is a demise charter of the Vessel. The RENTER accepts full possession, command "
            "and navigation of the Vessel for the Rental Period, furnishes its own crew and pays all "
            "operating costs. If the RENTER engages a captain, the RENTER remains responsible for the "
            "operation and management of the Vessel.",
        ),
    ]
    if 'speedboat' in (listing.subcategory or '').lower():
        clauses.append(_section(
            "4. PROPULSION, SPEED AND HULL STRESS",
            "The RENTER will observe local speed limits and navigation rules and is liable for structural "
            "hull damage caused by wave-jumping or improper trim at speed.",
        ))
    clauses.append(
        "<section><h3>INSURANCE</h3>"
        "<p>The OWNER shall make copies of all relevant insurance documentation available for inspection.</p>"
        f"{insurance_disclaimer}"
        "<p>The RENTER is responsible for determining whether such coverage and deductibles are adequate "
        "for its purposes.</p></section>"
    )
    clauses.append(_section(
        "SECURITY DEPOSIT",
        "The Security Deposit may be applied to any liability the RENTER incurs under this Agreement. Any "
        f"unused portion is refunded without interest within {DEPOSIT_REFUND_HOURS} hours after the end of "
        "the Rental Period or settlement of all outstanding questions, whichever is later.",
    ))
    clauses.append(_section(
        "WAIVER AND RELEASE OF LIABILITY",
        "The RENTER acknowledges the risks of watersport activities, including currents, wakes, collision, "
        "capsizing, hypothermia, drowning and death, and uses the Vessel at their own risk.",
        f"The RENTER releases and holds harmless {owner} and {PLATFORM_NAME} from all liability for injury "
        f"or damage arising from the rental, operation or use of the Vessel, even in the event of negligence "
        f"or fault by {owner}.",
    ))

    return (
        f"<h1>{ContractType.BAREBOAT.value}</h1>"
        f"{particulars}{''.join(clauses)}"
    )


def _external_pointer(listing, contract_type: ContractType) -> str:
    url = escape(listing.custom_contract_url)
    return (
        f"<h1>{escape(contract_type.value)}</h1>"
        f"<p>The owner of {escape(_item_name(listing))} uses their own rental agreement.</p>"
        f'<p><a href="{url}" target="_blank" rel="noopener">View the owner\'s agreement</a></p>'
    )


def render_contract(contract_type: ContractType, listing, renter, start_date: datetime, end_date: datetime,
                    total_price, generated_on: Optional[datetime] = None) -> ContractDocument:
    """
    Render the agreement for a booking.

    A listing with a custom contract preference is rendered as a pointer to
    the owner's document, except for bareboat charters which are always
    generated inline.
    """
    generated_on = generated_on or datetime.utcnow()
    reference = _document_reference(listing, generated_on)

    if contract_type is not ContractType.BAREBOAT and listing.contract_preference == 'custom':
        if not listing.custom_contract_url:
            raise ContractUnavailableError(
                f'Listing {listing.listing_id} requires a custom contract but none was provided'
            )
        logger.info(f"Referencing custom contract for listing {listing.listing_id}")
        return ContractDocument(contract_type, contract_type.value, _external_pointer(listing, contract_type),
                                reference, external_url=listing.custom_contract_url)

    if contract_type is ContractType.BAREBOAT:
        body = _bareboat_charter(listing, renter, start_date, end_date, total_price)
    else:
        if contract_type is ContractType.POWERSPORTS_WAIVER:
            terms = _liability_waiver(listing)
        else:
            terms = _standard_terms(listing)
        body = (
            f"<h1>{escape(contract_type.value)}</h1>"
            f"<p>Generated by {PLATFORM_NAME} on {generated_on.strftime('%B %d, %Y')}</p>"
            f"{_parties(listing, renter, start_date, end_date, 'Item')}"
            f"<p>{escape(listing.category)}{' / ' + str(escape(listing.subcategory)) if listing.subcategory else ''}</p>"
            f"{terms}{_common_terms(listing, total_price)}"
        )

    html = f'<div class="legal-contract">{body}<footer>DOC_REF: {reference}</footer></div>'
    return ContractDocument(contract_type, contract_type.value, html, reference)


def generate_contract(listing, renter, start_date: datetime, end_date: datetime, total_price,
                      generated_on: Optional[datetime] = None) -> ContractDocument:
    contract_type = select_contract_type(listing.category, listing.subcategory)
    return render_contract(contract_type, listing, renter, start_date, end_date, total_price, generated_on)


@dataclass(frozen=True)
class ContractSignature:
    signed_by: str
    signed_at: datetime
    contract_type: ContractType
    reference: str
