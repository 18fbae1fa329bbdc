"""Reconcilers for LoadBalancer objects."""

from lbwarden.loadbalancer.base import Result
from lbwarden.loadbalancer.controller import LoadBalancerController

__all__ = ["LoadBalancerController", "Result"]
