__version__ = "0.1.0"
__app_name__ = "mineworker"
