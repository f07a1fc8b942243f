from datetime import date
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class _Body(BaseModel):
    # los clientes mandan camelCase; internamente snake_case
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------- productos ----------
class BatchIn(_Body):
    batch_no: str = Field(alias="batchNo")
    qty: Decimal = Decimal("0")
    location: Optional[str] = None


class ProductIn(_Body):
    name: str
    size: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    quality: Optional[str] = None
    rate: Decimal = Decimal("0")
    status: str = "active"
    description: Optional[str] = None
    image: Optional[str] = None
    avail_qty: Decimal = Field(default=Decimal("0"), alias="availQty")
    batches: List[BatchIn] = Field(default_factory=list)


class ProductUpdate(_Body):
    name: Optional[str] = None
    size: Optional[str] = None
    brand: Optional[str] = None
    category: Optional[str] = None
    quality: Optional[str] = None
    rate: Optional[Decimal] = None
    status: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    batches: List[BatchIn] = Field(default_factory=list)


class ReconcileIn(_Body):
    fix: bool = False


# ---------- compras ----------
class PurchaseItemIn(_Body):
    product_id: Optional[int] = Field(default=None, alias="productId")
    product_name: Optional[str] = Field(default=None, alias="productName")
    size: Optional[str] = None
    quality: Optional[str] = None
    rate: Decimal = Decimal("0")
    cov: Optional[Decimal] = None
    qty: Optional[Decimal] = None
    batch_no: Optional[str] = Field(default=None, alias="batchNo")
    total: Decimal = Decimal("0")
    godown: Optional[str] = None


class PurchaseIn(_Body):
    bill_no: Optional[str] = Field(default=None, alias="billNo")
    purchase_date: Optional[date] = Field(default=None, alias="purchaseDate")
    client_name: Optional[str] = Field(default=None, alias="clientName")
    client_contact: Optional[str] = Field(default=None, alias="clientContact")
    subtotal: Decimal = Decimal("0")
    items: List[PurchaseItemIn] = Field(default_factory=list)


class PurchaseUpdate(PurchaseIn):
    purchase_id: int = Field(alias="purchaseId")


# ---------- cotizaciones ----------
class ClientDetails(_Body):
    name: Optional[str] = None
    contact_no: Optional[str] = Field(default=None, alias="contactNo")
    alt_contact_no: Optional[str] = Field(default=None, alias="altContactNo")
    email: Optional[str] = None
    address: Optional[str] = None
    attended_by: Optional[str] = Field(default=None, alias="attendedBy")
    architect: Optional[str] = None
    gst_no: Optional[str] = Field(default=None, alias="gstNo")


class QuotationRow(_Body):
    product_id: Optional[int] = Field(default=None, alias="productId")
    size: Optional[str] = None
    quality: Optional[str] = None
    rate: Decimal = Decimal("0")
    cov: Optional[Decimal] = None
    box: int = 0
    discount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    # las filas de cotización llegan con "Area"
    area: Decimal = Field(default=Decimal("0"), validation_alias=AliasChoices("area", "Area"))


class QuotationIn(_Body):
    client_details: ClientDetails = Field(default_factory=ClientDetails, alias="clientDetails")
    rows: List[QuotationRow] = Field(default_factory=list)
    grand_total: Decimal = Field(default=Decimal("0"), alias="grandTotal")
    additional_discount: Optional[str] = Field(default=None, alias="additionalDiscount")
    header_section: Optional[str] = Field(default=None, alias="headerSection")
    bottom_section: Optional[str] = Field(default=None, alias="bottomSection")

    @field_validator("additional_discount", mode="before")
    @classmethod
    def _discount_as_text(cls, v):
        return None if v is None else str(v)


class CommissionIn(_Body):
    quotation_id: int = Field(alias="quotationId")
    architect_id: Union[str, int] = Field(alias="architectId")
    commission_amount: Decimal = Field(alias="commissionAmount")


# ---------- challans ----------
class DriverDetails(_Body):
    delivery_boy: Optional[str] = Field(default=None, alias="deliveryBoy")
    driver_contact: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("driverContact", "contact", "driver_contact")
    )
    tempo: Optional[str] = None


class ChallanItemIn(_Body):
    product_id: int = Field(alias="productId")
    product_name: Optional[str] = Field(default=None, alias="productName")
    dispatch_boxes: int = Field(alias="dispatchBoxes")
    remaining_stock: Optional[Decimal] = Field(default=None, alias="remainingStock")


class ChallanIn(_Body):
    quotation_id: int = Field(alias="quotationId")
    client: Optional[str] = None
    contact: Optional[str] = None
    address: Optional[str] = None
    driver_details: DriverDetails = Field(default_factory=DriverDetails, alias="driverDetails")
    items: List[ChallanItemIn] = Field(default_factory=list)


# ---------- pagos ----------
class PaymentRequestIn(_Body):
    quotation_id: int = Field(alias="quotationId")
    amount: Decimal
    payment_type: Optional[str] = Field(default=None, alias="paymentType")
    remark: Optional[str] = None


class StatusUpdateIn(_Body):
    request_id: int = Field(alias="requestId")
    status: str
