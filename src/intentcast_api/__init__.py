"""IntentCast API - FastAPI gateway for the intent marketplace.

- Intents, offers and providers with an atomic accept
- Wallet-signature authentication for every mutation
- x402 fulfilment of accepted offers and manual payout release
"""

__version__ = "0.1.0"

from .main import create_app, create_app_from_env  # noqa: E402

__all__ = [
    "__version__",
    "create_app",
    "create_app_from_env",
]
