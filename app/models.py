from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr
from typing import Any, Dict, List, Optional, Union

# Every field is optional at the model level: a missing field is a
# structural verification failure (INVALID_INPUTS), not a 422.

Signals = Union[Dict[str, Any], List[Any]]


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    attestation_id: Optional[Union[StrictInt, StrictStr]] = Field(default=None, alias="attestationId")
    proof: Optional[Dict[str, Any]] = None
    public_signals: Optional[Signals] = Field(default=None, alias="publicSignals")
    # Older wallets send the same field as pubSignals
    pub_signals: Optional[Signals] = Field(default=None, alias="pubSignals")
    user_context_data: Optional[Union[Dict[str, Any], StrictStr]] = Field(default=None, alias="userContextData")

    @property
    def signals(self) -> Optional[Signals]:
        return self.public_signals if self.public_signals is not None else self.pub_signals


class ChallengeRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str = "viewer"
    subject_id: Optional[StrictStr] = None
