from typing import Optional, Union

from pydantic import BaseModel, ConfigDict


# Models
class StkPushRequest(BaseModel):
    amount: Optional[Union[int, float, str]] = None
    phone: Optional[Union[str, int]] = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "amount": 100,
                "phone": "254708374149",
            }
        }
    )


class SendOtpRequest(BaseModel):
    phone: Optional[Union[str, int]] = None


class VerifyOtpRequest(BaseModel):
    phone: Optional[Union[str, int]] = None
    code: Optional[Union[str, int]] = None
