from prometheus_client import Counter, Gauge

DEPLOYMENT_COUNTER = Counter(
    'doxy_deployments_total',
    'Deployment requests handled, by result',
    ['result'],
)

PROXY_REQUEST_COUNTER = Counter(
    'doxy_proxy_requests_total',
    'Requests received by the deployment proxy, by outcome',
    ['outcome'],
)

REGISTERED_DEPLOYMENTS_GAUGE = Gauge(
    'doxy_registered_deployments',
    'Number of deployment names currently routable',
)
