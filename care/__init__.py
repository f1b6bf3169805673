"""Care application for the clinic backend.

This package contains the access-control model, the real-time presence
and notification layer, and the models, services, views and route
registrations of the patient management API.
"""
