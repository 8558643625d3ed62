"""tourquote web route modules.

Each module exports a ``router`` (APIRouter) included by ``tourquote.web.app``.
"""
