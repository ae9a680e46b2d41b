"""Promo Mailer: product page URL in, Gmail-safe marketing emails out."""
