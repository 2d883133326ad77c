from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class PaymentStatus:
    reference: str
    status: str  # provider status, "succeeded" when paid
    amount: int  # minor units (pence)
    currency: str
    product: str | None  # exam | scenario | bundle, from the payment metadata


class PaymentVerifier(ABC):
    @abstractmethod
    async def retrieve(self, reference: str) -> PaymentStatus | None:
        """Look up a payment. None when the provider does not know it."""

    @abstractmethod
    def name(self) -> str:
        ...
