from .actions import AwsActionAdapter, translate_client_error

__all__ = ['AwsActionAdapter', 'translate_client_error']
