from typing import Any, List, Optional

from pydantic import BaseModel, Field

SUCCESS_RESULT_CODE = 0


def metadata_value(items: List[Any], name: str) -> Optional[Any]:
    """Return the Value of the first metadata item called `name`, or None."""
    for item in items:
        if isinstance(item, dict) and item.get("Name") == name:
            return item.get("Value")
    return None


class StkCallbackResult(BaseModel):
    result_code: Any = None
    result_desc: Optional[str] = None
    checkout_request_id: Optional[str] = None
    merchant_request_id: Optional[str] = None
    metadata: List[Any] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        # string "0" and booleans are not success codes
        if isinstance(self.result_code, bool):
            return False
        return isinstance(self.result_code, (int, float)) and self.result_code == SUCCESS_RESULT_CODE

    @property
    def receipt_number(self) -> Optional[Any]:
        return metadata_value(self.metadata, "MpesaReceiptNumber")

    @property
    def amount(self) -> Optional[Any]:
        return metadata_value(self.metadata, "Amount")

    @property
    def phone(self) -> Optional[Any]:
        return metadata_value(self.metadata, "PhoneNumber")


def parse_stk_callback(payload: Any) -> Optional[StkCallbackResult]:
    """Pull the stkCallback object out of a Daraja callback body.

    Returns None when the body has no Body.stkCallback object.
    """
    if not isinstance(payload, dict):
        return None
    body = payload.get("Body")
    if not isinstance(body, dict):
        return None
    stk_callback = body.get("stkCallback")
    if not isinstance(stk_callback, dict):
        return None

    callback_metadata = stk_callback.get("CallbackMetadata")
    items: List[Any] = []
    if isinstance(callback_metadata, dict) and isinstance(callback_metadata.get("Item"), list):
        items = callback_metadata["Item"]

    return StkCallbackResult(
        result_code=stk_callback.get("ResultCode"),
        result_desc=_as_text(stk_callback.get("ResultDesc")),
        checkout_request_id=_as_text(stk_callback.get("CheckoutRequestID")),
        merchant_request_id=_as_text(stk_callback.get("MerchantRequestID")),
        metadata=items,
    )


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)
