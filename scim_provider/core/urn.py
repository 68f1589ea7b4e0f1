"""SCIM schema URNs (RFC 7643 / RFC 7644)."""

ERROR_URN = "urn:ietf:params:scim:api:messages:2.0:Error"
GROUP_URN = "urn:ietf:params:scim:schemas:core:2.0:Group"
LIST_RESPONSE_URN = "urn:ietf:params:scim:api:messages:2.0:ListResponse"
PATCHOP_URN = "urn:ietf:params:scim:api:messages:2.0:PatchOp"
RESOURCE_TYPE_URN = "urn:ietf:params:scim:schemas:core:2.0:ResourceType"
SERVICE_PROVIDER_CONFIG_URN = "urn:ietf:params:scim:schemas:core:2.0:ServiceProviderConfig"
USER_URN = "urn:ietf:params:scim:schemas:core:2.0:User"
