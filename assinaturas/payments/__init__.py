# assinaturas/payments/__init__.py
from .base import ACTIVATE, CANCEL, IGNORE, WebhookEvent  # noqa: F401
from .doppus import DoppusProvider
from .hotmart import HotmartProvider

_PROVIDERS = {
    HotmartProvider.name: HotmartProvider,
    DoppusProvider.name: DoppusProvider,
}


def get_provider(name: str):
    """
    Retorna o adaptador do provedor de pagamento ("hotmart" | "doppus").
    Levanta KeyError para provedores desconhecidos.
    """
    key = (name or "").strip().lower()
    if key not in _PROVIDERS:
        raise KeyError(f"provedor desconhecido: {name}")
    return _PROVIDERS[key]()
