"""Mealwatch — live photo updates for the school food-safety portal.

The real-time layer behind the inspection portal: a Server-Sent Events
hub that fans photo changes out to every open gallery, and the client
that keeps one shared stream open and routes events to subscribers.
"""

__version__ = "0.1.0"
