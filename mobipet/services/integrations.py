"""Clients for external services, built once per process and injected into handlers."""

from dataclasses import dataclass, field

from fastapi import Request

from mobipet.services.email_service import Mailer
from mobipet.services.notifications import NotificationBroker
from mobipet.services.payment_gateway import PaymentGateway


@dataclass
class Integrations:
    mailer: Mailer | None = None
    gateway: PaymentGateway | None = None
    broker: NotificationBroker = field(default_factory=NotificationBroker)

    def close(self) -> None:
        if self.gateway is not None:
            self.gateway.close()


def build_integrations() -> Integrations:
    return Integrations(mailer=Mailer(), gateway=PaymentGateway(), broker=NotificationBroker())


def get_integrations(request: Request) -> Integrations:
    return request.app.state.integrations
