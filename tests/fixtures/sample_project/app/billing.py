"""Billing workflow."""

from .models import Invoice


def create_invoice(number, total):
    return Invoice(number, total)


if __name__ == "__main__":
    print(create_invoice(1, 100).with_tax(0.2))
