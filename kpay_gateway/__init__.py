"""KNET (KPay) payment gateway integration."""

__version__ = "0.1.0"
