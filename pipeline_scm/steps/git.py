"""Checkout step bound to a git repository."""

from __future__ import annotations

from typing import Dict, Optional, Sequence

from ..scm.git import GitBackend, get_scm_backend
from .base import CheckoutConfig, CheckoutListener
from .checkout import CheckoutStep


class GitStep(CheckoutStep):
    """Checkout step for a git URL.

    Example:
        step = GitStep("https://github.com/user/repo.git#main", poll=False)
        env = step.start(context).run()
    """

    def __init__(
        self,
        url: str,
        options: Optional[Dict] = None,
        *,
        listeners: Sequence[CheckoutListener] = (),
        **config,
    ) -> None:
        super().__init__(CheckoutConfig(**config), listeners=listeners)
        self.url = url
        self.options = options

    def create_backend(self) -> GitBackend:
        return get_scm_backend(self.url, self.options)
