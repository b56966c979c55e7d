from pydantic import BaseModel

from attestgate.core.attestation.types import AttestationData, Platform


class ChallengeRequest(BaseModel):
    identifier: str


class AttestationRequest(BaseModel):
    platform: str
    token: str
    key_id: str
    challenge: str
    bound_identifier: str | None = None

    def to_attestation_data(self) -> AttestationData:
        return AttestationData(
            platform=Platform.parse(self.platform),
            token=self.token,
            key_id=self.key_id,
            challenge=self.challenge,
            bound_identifier=self.bound_identifier,
        )


class AssertionRequest(BaseModel):
    assertion: str
    client_data: str  # base64
    key_id: str
