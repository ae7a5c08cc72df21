"""oslo.config options for the Che gateway.

Options live in the ``gateway`` group so they can be overridden from an INI
file passed with ``--gateway-config``::

    [gateway]
    traefik_image = registry.local/traefik:v2.2.8
"""

from oslo_config import cfg

from devworkspace_che.gateway import GatewaySettings

GATEWAY_GROUP = 'gateway'

_DEFAULTS = GatewaySettings()

gateway_opts = [
    cfg.StrOpt('traefik_image',
               default=_DEFAULTS.traefik_image,
               help='Container image of the traefik gateway.'),
    cfg.StrOpt('configurer_image',
               default=_DEFAULTS.configurer_image,
               help='Container image of the sidecar gathering workspace '
                    'gateway configs into the traefik dynamic config.'),
    cfg.PortOpt('service_port',
                default=_DEFAULTS.service_port,
                help='Port exposed by the gateway Service.'),
    cfg.FloatOpt('requeue_initializing',
                 default=_DEFAULTS.requeue_initializing,
                 min=0,
                 help='Seconds before a manager whose gateway is still '
                      'initializing is reconciled again.'),
]


def register_gateway_opts(conf):
    """Register the gateway options on ``conf`` (idempotent)."""
    conf.register_opts(gateway_opts, group=GATEWAY_GROUP)


def gateway_settings_from_conf(conf):
    group = conf[GATEWAY_GROUP]
    return GatewaySettings(
        traefik_image=group.traefik_image,
        configurer_image=group.configurer_image,
        service_port=int(group.service_port),
        requeue_initializing=float(group.requeue_initializing),
    )


def load_gateway_settings(config_file=None):
    """Build gateway settings from defaults and an optional INI file."""
    conf = cfg.ConfigOpts()
    register_gateway_opts(conf)
    args = ['--config-file', str(config_file)] if config_file else []
    conf(args=args, project='che-routing-operator', default_config_files=[])
    return gateway_settings_from_conf(conf)
