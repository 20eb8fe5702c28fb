"""End-to-end runs over the simulated network, honest and adversarial."""

import random

import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from sim.adversary.adversary import (
    BadShareDealer, FalseAccuser, PartialSignatureCorruptor, ShareWithholder,
    SilentAdversary,
)
from sim.core.message_bus import AdversaryHook, SimMessageBus
from sim.network.sim_network import SimNetwork
from tdkg.dkg import DKGRound
from tdkg.dss import SigningRound, verify_signature
from tdkg.errors import ThresholdNotMet
from tdkg.messages import (
    CommitmentBroadcast, EncryptedShare, Justification, NonceCommitment, ShareResponse,
)


def _assert_valid(net, signature, message):
    Y = next(node.key_package for node in net.nodes.values()
             if node.key_package is not None).group_public_key
    assert verify_signature(signature, Y, message)
    Ed25519PublicKey.from_public_bytes(Y.encode()).verify(signature.signature_bytes(), message)


class TestMessageBus:

    def test_waves_and_routing(self):
        bus = SimMessageBus(wire=False)
        seen = {1: [], 2: [], 3: []}
        for i in seen:
            bus.register_handler(i, seen[i].append)
        msg = ShareResponse(b'\x01' * 32, 1)
        bus.route(1, [msg])
        assert bus.pending_count == 2
        assert bus.deliver_wave() == 2
        assert seen[2] == [msg] and seen[3] == [msg] and seen[1] == []
        assert bus.messages_from(1, ShareResponse) == [msg, msg]

    def test_wire_mode_round_trips(self):
        bus = SimMessageBus(wire=True)
        got = []
        bus.register_handler(2, got.append)
        bus.register_handler(1, lambda m: None)
        msg = ShareResponse(b'\x02' * 32, 1)
        bus.route(1, [msg])
        assert isinstance(bus._pending[0].message, bytes)
        bus.run_until_idle()
        assert got == [msg]

    def test_hook_drops(self):
        class DropAll(AdversaryHook):
            def on_send(self, env):
                return None

        bus = SimMessageBus(wire=False)
        bus.register_handler(1, lambda m: None)
        bus.register_handler(2, lambda m: None)
        bus.add_hook(DropAll())
        bus.route(1, [ShareResponse(b'\x03' * 32, 1)])
        assert bus.pending_count == 0


class TestHonestNetwork:

    def test_dkg_agrees(self):
        net = SimNetwork(5, 3, seed=7)
        packages = net.run_dkg()
        assert sorted(packages) == [1, 2, 3, 4, 5]
        assert len(net.group_public_keys()) == 1
        for pkg in packages.values():
            assert pkg.qualified == (1, 2, 3, 4, 5)
        # one broadcast copy and one sealed share per peer
        assert len(net.bus.messages_from(1, CommitmentBroadcast)) == 4
        assert len(net.bus.messages_from(1, EncryptedShare)) == 4

    def test_default_threshold(self):
        net = SimNetwork(7, seed=3)
        assert net.t == 5
        assert len(net.run_dkg()) == 7

    def test_sign_after_dkg(self):
        net = SimNetwork(5, 3, seed=7)
        net.run_dkg()
        sigs = net.run_signing(b'test', [1, 3, 4])
        assert sorted(sigs) == [1, 3, 4]
        assert len(set(sigs.values())) == 1
        _assert_valid(net, sigs[1], b'test')

    def test_several_messages(self):
        net = SimNetwork(4, 2, seed=11)
        net.run_dkg()
        for m, quorum in [(b'a', [1, 2]), (b'b', [2, 4]), (b'c', [1, 2, 3, 4])]:
            sigs = net.run_signing(m, quorum)
            _assert_valid(net, sigs[quorum[0]], m)
        assert len(net.nodes[2].nonce_tracker) == 2 * (2 + 2 + 4)

    def test_in_memory_mode(self):
        net = SimNetwork(4, 3, seed=5, wire=False)
        net.run_dkg()
        sigs = net.run_signing(b'no wire', [2, 3, 4])
        _assert_valid(net, sigs[2], b'no wire')


class TestAdversarialDKG:

    def test_silent_participant_times_out(self):
        net = SimNetwork(5, 3, seed=13)
        net.add_hook(SilentAdversary([5]).get_hook())
        packages = net.run_dkg()
        # 5 is partitioned and never hears that it was dropped
        honest = (1, 2, 3, 4)
        assert len({packages[i].group_public_key.encode() for i in honest}) == 1
        for i in honest:
            assert net.excluded_by(i) == {5: "timed out"}
            assert packages[i].qualified == honest

        sigs = net.run_signing(b'after timeout', [1, 2, 4])
        _assert_valid(net, sigs[4], b'after timeout')

    def test_too_many_silent(self):
        net = SimNetwork(5, 3, seed=13)
        net.add_hook(SilentAdversary([4, 5]).get_hook())
        net.add_hook(SilentAdversary([3]).get_hook())
        packages = net.run_dkg()
        assert packages == {}
        assert isinstance(net.nodes[1].error, ThresholdNotMet)

    def test_bad_share_dealer_excluded(self):
        net = SimNetwork(5, 3, seed=17)
        adversary = BadShareDealer([2], net.nodes, random.Random(1), victims=[1])
        net.add_hook(adversary.get_hook())
        packages = net.run_dkg()

        assert sorted(packages) == [1, 3, 4, 5]
        assert len(net.group_public_keys()) == 1
        for i in (1, 3, 4, 5):
            assert 2 in net.excluded_by(i)
            assert 2 not in packages[i].qualified
        assert net.nodes[2].dkg.state == DKGRound.ABORTED
        assert net.nodes[2].error is None
        assert len(adversary.observed_messages) > 0

        sigs = net.run_signing(b'without 2', [1, 4, 5])
        _assert_valid(net, sigs[1], b'without 2')

    def test_false_accuser_excluded(self):
        net = SimNetwork(5, 3, seed=19)
        net.add_hook(FalseAccuser([3], net.nodes, random.Random(2), accused=[1]).get_hook())
        packages = net.run_dkg()

        assert sorted(packages) == [1, 2, 4, 5]
        for i in (1, 2, 4, 5):
            assert 3 in net.excluded_by(i)
            assert 1 not in net.excluded_by(i)
            assert packages[i].qualified == (1, 2, 4, 5)
        assert len(net.group_public_keys()) == 1

    def test_withheld_share_is_justified(self):
        net = SimNetwork(5, 3, seed=29)
        net.add_hook(ShareWithholder([2], victims=[1]).get_hook())
        packages = net.run_dkg()

        assert sorted(packages) == [1, 2, 3, 4, 5]
        assert len(net.group_public_keys()) == 1
        for i in packages:
            assert net.excluded_by(i) == {}
            assert net.nodes[i].dkg.disputes == [(2, 1)]
        assert len(net.bus.messages_from(2, Justification)) == 4

        sigs = net.run_signing(b'with 2', [1, 2, 3])
        _assert_valid(net, sigs[1], b'with 2')

    def test_unjustified_withholder_excluded_by_all(self):
        net = SimNetwork(5, 3, seed=31)
        net.add_hook(ShareWithholder([2], victims=[1, 3], justify=False).get_hook())
        packages = net.run_dkg()

        honest = (1, 3, 4, 5)
        assert len({packages[i].group_public_key.encode() for i in honest}) == 1
        for i in honest:
            assert net.excluded_by(i) == {2: "no justification for 1"}
            assert packages[i].qualified == honest

        sigs = net.run_signing(b'without 2', [1, 3, 5])
        _assert_valid(net, sigs[3], b'without 2')


class TestAdversarialSigning:

    @pytest.fixture
    def net(self):
        net = SimNetwork(5, 3, seed=23)
        net.run_dkg()
        return net

    def test_corrupt_signer_is_dropped_on_retry(self, net):
        net.add_hook(PartialSignatureCorruptor([4]).get_hook())
        sigs = net.run_signing(b'retry', [1, 2, 3, 4])

        assert len({sigs[1], sigs[2], sigs[3]}) == 1
        _assert_valid(net, sigs[1], b'retry')
        for i in (1, 2, 3):
            signing = net.nodes[i].signing
            assert signing.attempt == 1
            assert signing.quorum == (1, 2, 3)

    def test_corrupt_signer_in_minimal_quorum(self, net):
        net.add_hook(PartialSignatureCorruptor([4]).get_hook())
        sigs = net.run_signing(b'test', [1, 3, 4])
        assert 1 not in sigs and 3 not in sigs
        for i in (1, 3):
            node = net.nodes[i]
            assert isinstance(node.error, ThresholdNotMet)
            assert node.signing.flagged == (4,)
            assert node.signing.state == SigningRound.ABORTED

    def test_silent_signer_stalls(self, net):
        net.add_hook(SilentAdversary([2]).get_hook())
        sigs = net.run_signing(b'stall', [1, 2, 3])
        assert 1 not in sigs
        assert net.nodes[1].signing.state == SigningRound.NONCE_COMMIT

    def test_replayed_nonce_rejected(self, net):
        sigs = net.run_signing(b'first', [1, 2, 3])
        assert len(sigs) == 3
        first = net.bus.messages_from(2, NonceCommitment)[0]

        session_id = net.new_session_id(b'sim-sign')
        net._register([1, 2, 3])
        outbound = net.nodes[1].start_signing(session_id, b'second', [1, 2, 3])
        assert len(outbound) == 1
        net.nodes[1].receive_message(
            NonceCommitment(session_id, 2, first.D, first.E))
        assert net.nodes[1].signing.state == SigningRound.ABORTED
