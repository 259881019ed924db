"""dnsmasq process supervision and cache statistics."""