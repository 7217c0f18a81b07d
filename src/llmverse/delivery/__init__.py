"""Delivery of fragment streams to chat surfaces."""

from llmverse.delivery.adapter import ChunkedDeliveryAdapter, DeliverySurface, DeliveryWindow

__all__ = ["ChunkedDeliveryAdapter", "DeliverySurface", "DeliveryWindow"]
