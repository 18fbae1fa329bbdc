__version__ = "0.1.0"
__description__ = (
    "Kubernetes controller that reconciles LoadBalancer objects onto OpenStack security groups, "
    "floating IPs and ports, and rolls out LoadBalancerSets without downtime"
)
