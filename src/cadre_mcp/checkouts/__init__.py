"""Working-copy provisioning."""

from .git import CheckoutError, CheckoutInfo, CheckoutProvider, GitCheckoutProvider

__all__ = ["CheckoutError", "CheckoutInfo", "CheckoutProvider", "GitCheckoutProvider"]
