class WebhookError(Exception):
    """Base dos erros de processamento de webhook."""


class PayloadError(WebhookError):
    """Corpo do webhook em formato inesperado."""


class UserNotFound(WebhookError):
    def __init__(self, email):
        super().__init__(f"Usuário com email {email} não encontrado")
        self.email = email


class StaleEvent(WebhookError):
    """Evento mais antigo que o último já aplicado ao usuário."""


class ForeignSubscription(WebhookError):
    """Cancelamento que não se refere à assinatura atual do usuário."""
