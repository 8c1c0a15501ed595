"""
Services module for business logic separation.

This module contains the view counting components: the aggregation buffer,
the record resolver, the flush coordinator and scheduler, and the
ViewCountService façade used by the API endpoints.
"""
