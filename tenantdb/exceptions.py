import typing


class TenancyException(Exception):
    """
    Base exception class for all tenantdb errors.

    Carries an optional `detail` message next to the positional arguments so
    callers can surface a short human readable explanation.
    """

    def __init__(
        self,
        *args: typing.Any,
        detail: str = "",
    ):
        """
        Initializes the TenancyException.

        Args:
            *args (typing.Any): Variable length argument list to be included
                in the exception message.
            detail (str, optional): A more detailed explanation of the exception.
                Defaults to an empty string.
        """
        self.detail = detail
        super().__init__(*(str(arg) for arg in args if arg), self.detail)

    def __repr__(self) -> str:
        if self.detail:
            return f"{type(self).__name__} - {self.detail}"
        return type(self).__name__

    def __str__(self) -> str:
        return " ".join(arg for arg in self.args if arg).strip()


class ImproperlyConfigured(TenancyException):
    """
    Exception raised when the tenancy options are incomplete or contradictory.

    For example when neither a tenant header nor subdomain resolution is
    configured, or when a dialect cannot be mapped to an async driver.
    """


class TenantResolutionError(TenancyException):
    """
    Exception raised when no tenant id can be derived for a unit of work.

    Typical causes are a missing tenant header or a host without a subdomain.
    Raised before any connection work begins.
    """


class TenantValidationError(TenancyException):
    """
    Exception raised when a tenant id is rejected by the whitelist or by the
    configured validator.
    """

    def __init__(self, tenant_id: str, reason: str = "") -> None:
        self.tenant_id = tenant_id
        self.reason = reason
        super().__init__(
            f'Tenant "{tenant_id}" was rejected.',
            detail=reason,
        )

    def __str__(self) -> str:
        if self.reason:
            return f'Tenant "{self.tenant_id}" was rejected: {self.reason}'
        return f'Tenant "{self.tenant_id}" was rejected.'


class TenantConnectionError(TenancyException):
    """
    Exception raised when the connection for a tenant could not be opened.

    Carries the dialect and host of the failed attempt. The underlying driver
    failure is available as `__cause__`. Nothing is cached on failure, so a
    later call for the same tenant id retries the creation.
    """

    def __init__(
        self,
        tenant_id: str,
        *,
        dialect: str | None = None,
        host: str | None = None,
        reason: str = "",
    ) -> None:
        self.tenant_id = tenant_id
        self.dialect = dialect
        self.host = host
        self.reason = reason
        super().__init__(
            f'Could not open the connection for tenant "{tenant_id}" '
            f"(dialect={dialect!r}, host={host!r})",
            detail=reason,
        )

    def __str__(self) -> str:
        message = self.args[0]
        if self.reason:
            return f"{message}: {self.reason}"
        return message


class ModelNotFound(TenancyException, LookupError):
    """
    Exception raised when a model name is looked up but was never registered.
    """


class QueryError(TenancyException):
    """
    Exception raised when a bound model is queried with invalid arguments,
    for instance a filter on a column the table does not have.
    """
