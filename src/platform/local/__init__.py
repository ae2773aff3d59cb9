"""Local network isolation: namespace, SSH agent, dnsmasq and tap wiring."""
