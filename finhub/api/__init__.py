# API Package
from finhub.api.client import ApiClient, AuthContext, ResponseCache, response_cache
from finhub.api.resources import Api, ListResult

__all__ = [
    'ApiClient',
    'AuthContext',
    'ResponseCache',
    'response_cache',
    'Api',
    'ListResult',
]
