from rest_framework.throttling import UserRateThrottle


class ResponseThrottle(UserRateThrottle):
    scope = "finding_response"
